"""
Remote recognition services.

Provides:
- MathpixRecognizer: Mathpix v3/text (text + styled LaTeX)
- MistralRecognizer: Mistral vision chat completion with a heuristic confidence
- AliCloudRecognizer: Alibaba Cloud RecognizeGeneral with signed RPC requests

All ignore local recognition configurations and are invoked once per image.
"""

import base64
import hashlib
import hmac
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

import requests

from .correction import latex_to_unicode
from .errors import EngineUnavailable, RecognitionTimeout
from .io import encode_png
from .ocr_text import RecognitionCandidate, RecognitionConfig, RecognizerAdapter
from .raster import RasterBuffer

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


def _data_url(image: RasterBuffer) -> str:
    image_b64 = base64.b64encode(encode_png(image)).decode('utf-8')
    return f"data:image/png;base64,{image_b64}"


# ============================================================================
# Mathpix Recognizer
# ============================================================================

class MathpixRecognizer(RecognizerAdapter):
    """Recognition using the Mathpix text API."""
    name = "mathpix"
    supports_configs = False

    API_URL = "https://api.mathpix.com/v3/text"
    # Short or symbol-only text means Mathpix put the content into LaTeX
    SYMBOL_ONLY = re.compile(r'^[\s\d+\-=<>(){}\[\]/\\^_]*$')
    MIN_TEXT_LENGTH = 20

    def __init__(
        self,
        app_id: Optional[str],
        app_key: Optional[str],
        timeout: float = DEFAULT_REQUEST_TIMEOUT
    ):
        if not app_id or not app_key:
            raise EngineUnavailable("Mathpix requires app_id and app_key")
        self.app_id = app_id
        self.app_key = app_key
        self.timeout = timeout

    def recognize(self, image: RasterBuffer, config: RecognitionConfig) -> RecognitionCandidate:
        headers = {
            "app_id": self.app_id,
            "app_key": self.app_key,
            "Content-type": "application/json"
        }

        data = {
            "src": _data_url(image),
            "formats": ["text", "latex_styled"],
            "ocr_options": {
                "math_inline_delimiters": ["$", "$"],
                "include_latex": True
            }
        }

        try:
            response = requests.post(
                self.API_URL,
                headers=headers,
                json=data,
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.Timeout:
            raise RecognitionTimeout(f"Mathpix request timed out after {self.timeout}s")
        except (requests.exceptions.RequestException, ValueError) as e:
            raise EngineUnavailable(f"Mathpix API error: {e}")

        if not isinstance(result, dict):
            raise EngineUnavailable(f"Unexpected Mathpix response: {type(result).__name__}")
        if result.get("error"):
            raise EngineUnavailable(f"Mathpix API error: {result['error']}")

        text = result.get("text") or ""
        latex = result.get("latex_styled") or ""
        if not isinstance(text, str) or not isinstance(latex, str):
            raise EngineUnavailable("Unexpected Mathpix response: non-text content")
        if latex and (len(text.strip()) < self.MIN_TEXT_LENGTH or self.SYMBOL_ONLY.match(text)):
            logger.debug("Mathpix text too thin, using converted LaTeX")
            text = latex_to_unicode(latex)

        return RecognitionCandidate(
            text=text,
            confidence=self.confidence_of(result) * 100,
            config_label=self.name,
            engine=self.name
        )

    @staticmethod
    def confidence_of(result: dict) -> float:
        """Reported confidence in [0, 1]; missing or malformed values read as 0.5."""
        try:
            confidence = float(result.get("confidence"))
        except (TypeError, ValueError):
            return 0.5
        if not 0.0 <= confidence <= 1.0:
            return 0.5
        return confidence


# ============================================================================
# Mistral Recognizer
# ============================================================================

class MistralRecognizer(RecognizerAdapter):
    """Recognition using a Mistral vision model through chat completions."""
    name = "mistral"
    supports_configs = False

    API_URL = "https://api.mistral.ai/v1/chat/completions"
    PROMPT = (
        "请识别图片中的试题内容，完整输出题号、题干和全部选项。"
        "保持原有格式，数学符号使用Unicode字符，不要添加任何解释。"
    )
    EDUCATION_KEYWORDS = ("题", "选择", "计算", "求解", "分析", "根据", "下列", "关于")
    OPTION_PATTERN = re.compile(r'[A-D][.．]')
    MATH_SYMBOLS = re.compile(r'[=+\-×÷√π∠°≤≥]')

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "pixtral-12b-2409",
        timeout: float = DEFAULT_REQUEST_TIMEOUT
    ):
        if not api_key:
            raise EngineUnavailable("Mistral requires an API key")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def recognize(self, image: RasterBuffer, config: RecognitionConfig) -> RecognitionCandidate:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        data = {
            "model": self.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": self.PROMPT},
                    {"type": "image_url", "image_url": _data_url(image)}
                ]
            }],
            "max_tokens": 2000,
            "temperature": 0.1
        }

        try:
            response = requests.post(
                self.API_URL,
                headers=headers,
                json=data,
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
            text = result["choices"][0]["message"]["content"] or ""
        except requests.exceptions.Timeout:
            raise RecognitionTimeout(f"Mistral request timed out after {self.timeout}s")
        except (requests.exceptions.RequestException, ValueError) as e:
            raise EngineUnavailable(f"Mistral API error: {e}")
        except (KeyError, IndexError, TypeError) as e:
            raise EngineUnavailable(f"Unexpected Mistral response: {e}")

        if not isinstance(text, str):
            raise EngineUnavailable("Unexpected Mistral response: non-text content")

        text = text.strip()
        return RecognitionCandidate(
            text=text,
            confidence=self.estimate_confidence(text),
            config_label=self.name,
            engine=self.name
        )

    @classmethod
    def estimate_confidence(cls, text: str) -> float:
        """Heuristic confidence (0-95) from length and exam-like content."""
        if not text:
            return 0.0

        confidence = 50.0
        if len(text) > 20:
            confidence += 20
        if len(text) > 50:
            confidence += 10

        confidence += 2 * sum(1 for kw in cls.EDUCATION_KEYWORDS if kw in text)

        if cls.OPTION_PATTERN.search(text):
            confidence += 10
        if cls.MATH_SYMBOLS.search(text):
            confidence += 5

        return min(confidence, 95.0)


# ============================================================================
# Alibaba Cloud Recognizer
# ============================================================================

def percent_encode(value: str) -> str:
    """RFC 3986 encoding as required by Alibaba Cloud RPC signatures."""
    return quote(str(value), safe="-_.~")


def sign_rpc_request(params: dict, access_key_secret: str, method: str = "POST") -> str:
    """HMAC-SHA1 signature (version 1.0) over the sorted query parameters."""
    canonical = "&".join(
        f"{percent_encode(k)}={percent_encode(v)}" for k, v in sorted(params.items())
    )
    string_to_sign = f"{method}&{percent_encode('/')}&{percent_encode(canonical)}"
    digest = hmac.new(
        (access_key_secret + "&").encode("utf-8"),
        string_to_sign.encode("utf-8"),
        hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("utf-8")


class AliCloudRecognizer(RecognizerAdapter):
    """Recognition using Alibaba Cloud general OCR (RecognizeGeneral)."""
    name = "alicloud"
    supports_configs = False

    API_URL = "https://ocr-api.cn-hangzhou.aliyuncs.com"
    ACTION = "RecognizeGeneral"
    VERSION = "2021-07-07"

    def __init__(
        self,
        access_key_id: Optional[str],
        access_key_secret: Optional[str],
        timeout: float = DEFAULT_REQUEST_TIMEOUT
    ):
        if not access_key_id or not access_key_secret:
            raise EngineUnavailable("Alibaba Cloud OCR requires an access key id and secret")
        self.access_key_id = access_key_id
        self.access_key_secret = access_key_secret
        self.timeout = timeout

    def signed_params(self) -> dict:
        params = {
            "Action": self.ACTION,
            "Version": self.VERSION,
            "Format": "JSON",
            "AccessKeyId": self.access_key_id,
            "SignatureMethod": "HMAC-SHA1",
            "SignatureVersion": "1.0",
            "SignatureNonce": uuid.uuid4().hex,
            "Timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        params["Signature"] = sign_rpc_request(params, self.access_key_secret)
        return params

    def recognize(self, image: RasterBuffer, config: RecognitionConfig) -> RecognitionCandidate:
        try:
            response = requests.post(
                self.API_URL,
                params=self.signed_params(),
                data=encode_png(image),
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.Timeout:
            raise RecognitionTimeout(f"Alibaba Cloud OCR request timed out after {self.timeout}s")
        except (requests.exceptions.RequestException, ValueError) as e:
            raise EngineUnavailable(f"Alibaba Cloud OCR API error: {e}")

        if not isinstance(result, dict):
            raise EngineUnavailable(f"Unexpected Alibaba Cloud OCR response: {type(result).__name__}")
        if result.get("Code") and "Data" not in result:
            raise EngineUnavailable(
                f"Alibaba Cloud OCR API error: {result['Code']} {result.get('Message', '')}".strip()
            )

        # Data arrives as a JSON document inside a string field
        data = result.get("Data")
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise EngineUnavailable(f"Unexpected Alibaba Cloud OCR response: {e}")
        if not isinstance(data, dict):
            raise EngineUnavailable("Unexpected Alibaba Cloud OCR response: no Data")

        text = data.get("content") or ""
        if not isinstance(text, str):
            raise EngineUnavailable("Unexpected Alibaba Cloud OCR response: non-text content")

        return RecognitionCandidate(
            text=text.strip(),
            confidence=self.confidence_of(data.get("prism_wordsInfo")),
            config_label=self.name,
            engine=self.name
        )

    @staticmethod
    def confidence_of(words) -> float:
        """Mean word probability (0-100); 50 when none is reported."""
        probs = []
        for word in words or ():
            if not isinstance(word, dict):
                continue
            try:
                probs.append(float(word.get("prob")))
            except (TypeError, ValueError):
                continue
        probs = [p for p in probs if 0.0 <= p <= 100.0]
        if not probs:
            return 50.0
        return sum(probs) / len(probs)
