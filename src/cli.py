#!/usr/bin/env python
"""
Command-line interface for the Exam Question Recognition Pipeline.

Usage:
    python src/cli.py --input <image_or_folder_or_txt> [--output <dir>] [options]
    python src/cli.py --text "<question text>" [options]

Examples:
    # Recognize and parse a photographed question
    python src/cli.py --input question.jpg --output ./output

    # Parse text directly (no image stages)
    python src/cli.py --text "4. 下列说法正确的是 A. 1 B. 2 C. 3 D. 4"

    # Debug mode with enhanced/comparison images
    python src/cli.py --input question.jpg --output ./output --debug
"""

import sys
from pathlib import Path

# Add src directory to path for imports when running as script
_src_dir = Path(__file__).parent
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

import argparse
import logging
import time

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("exam_recon")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    from utils.images import PROFILES
    from utils.ocr_text import CONFIG_PRESETS, ENGINES

    parser = argparse.ArgumentParser(
        description="Exam Question Recognition - Convert question photos to structured records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Recognize a question image and save JSON:
    python src/cli.py --input question.jpg --output ./output

  Use Mathpix first, then local Tesseract:
    python src/cli.py --input question.jpg --engine mathpix

  Parse text only:
    python src/cli.py --text "1. 计算 (1) 2+3 (2) 4+5"
        """
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--input", "-i",
        help="Input image, folder of images, or .txt file"
    )
    source.add_argument(
        "--text", "-t",
        help="Question text to parse directly"
    )

    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Output directory for JSON results (default: print only)"
    )

    parser.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        default=None,
        help="Enhancement profile (default: general)"
    )

    parser.add_argument(
        "--engine",
        choices=ENGINES,
        default=None,
        help="Preferred recognition engine (default: tesseract)"
    )

    parser.add_argument(
        "--fallback-engine",
        nargs="+",
        choices=ENGINES,
        default=None,
        help="Engines tried, in order, when the preferred one yields nothing"
    )

    parser.add_argument(
        "--configs",
        nargs="+",
        choices=sorted(CONFIG_PRESETS),
        default=None,
        help="1-4 recognition configuration presets"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Timeout per recognition invocation in seconds (default: 30)"
    )

    parser.add_argument(
        "--sequential",
        action="store_true",
        help="Run recognition configurations one after another"
    )

    parser.add_argument(
        "--subject",
        default=None,
        help="Subject hint used when detection is inconclusive (e.g. 数学)"
    )

    parser.add_argument(
        "--structure-example",
        default=None,
        help="Advisory structure example recorded with the result"
    )

    parser.add_argument(
        "--use-gpu",
        action="store_true",
        help="Use GPU for engines that support it"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (saves enhanced and comparison images)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    return parser


def check_dependencies(engine: str = "tesseract") -> bool:
    """
    Check if required dependencies for the image path are available.

    The tesseract binary is required only when Tesseract is the preferred
    engine; otherwise it is the last fallback and its absence is a warning.
    """
    missing = []
    optional_missing = []

    # Required
    try:
        import cv2
    except ImportError:
        missing.append("opencv-python")

    try:
        import numpy
    except ImportError:
        missing.append("numpy")

    try:
        import pytesseract
        # Test if tesseract is actually installed
        try:
            pytesseract.get_tesseract_version()
        except Exception:
            if engine == "tesseract":
                missing.append("tesseract-ocr (system package)")
            else:
                logger.warning(f"tesseract-ocr not found; no local fallback behind {engine}")
    except ImportError:
        missing.append("pytesseract")

    # Optional engines
    try:
        import easyocr
    except ImportError:
        optional_missing.append("easyocr (alternative engine)")

    try:
        import paddleocr
    except ImportError:
        optional_missing.append("paddleocr (alternative engine)")

    try:
        import torch
    except ImportError:
        optional_missing.append("pytorch (for GPU acceleration)")

    # Report
    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("\nInstall with: pip install -e .")
        return False

    if optional_missing:
        logger.debug("Missing optional dependencies (some engines unavailable):")
        for dep in optional_missing:
            logger.debug(f"  - {dep}")

    return True


def build_config(args):
    """Pipeline configuration from environment and command-line overrides."""
    from config import get_config, check_gpu_available

    config = get_config()

    if args.profile:
        config.image.profile = args.profile
    if args.engine:
        config.ocr.engine = args.engine
    if args.fallback_engine:
        config.ocr.fallback_engines = list(args.fallback_engine)
    if args.configs:
        config.ocr.config_labels = list(args.configs)
    if args.timeout is not None:
        config.ocr.timeout = args.timeout
    if args.sequential:
        config.ocr.concurrent = False
    if args.debug:
        config.debug_mode = True
        config.output_debug_images = True

    if args.use_gpu:
        if check_gpu_available():
            logger.info("GPU acceleration enabled")
            config.use_gpu = True
        else:
            logger.warning("GPU requested but not available, using CPU")

    return config


def print_question(question, title: str):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(question.to_text())
    print("=" * 60)


def run_text(args, assembler, output_dir) -> int:
    """Text path: parse text from --text or a .txt file."""
    from utils.io import read_text, save_json

    if args.text is not None:
        text, name = args.text, "text"
    else:
        text, name = read_text(args.input), Path(args.input).stem

    question = assembler.parse_text(text, subject_hint=args.subject)

    if output_dir:
        json_path = save_json(question.to_dict(), output_dir / f"{name}.json")
        logger.info(f"Saved JSON: {json_path}")

    if not args.quiet:
        print_question(question, "PARSED QUESTION")

    return 0


def run_images(args, assembler, images, output_dir, config) -> int:
    """Image path: recognize, correct, classify and parse each image."""
    from config import JSON_SCHEMA_VERSION
    from utils.errors import ExamReconError
    from utils.images import create_comparison_image
    from utils.io import save_image, save_json

    failures = 0
    for image_path, raster in images:
        logger.info(f"Processing {image_path} ({raster.width}x{raster.height})")
        try:
            result = assembler.analyze_image_sync(
                raster,
                subject_hint=args.subject,
                structure_example=args.structure_example
            )
        except ExamReconError as e:
            failures += 1
            logger.error(f"Recognition failed for {image_path}: {e}")
            continue

        if output_dir:
            payload = {"schema_version": JSON_SCHEMA_VERSION, "source_file": str(image_path)}
            payload.update(result.to_dict())
            json_path = save_json(payload, output_dir / f"{image_path.stem}.json")
            logger.info(f"Saved JSON: {json_path}")

            enhanced = result.recognition.enhanced_image
            if config.output_debug_images and enhanced is not None:
                save_image(enhanced, output_dir / f"{image_path.stem}_enhanced.png")
                comparison = create_comparison_image(raster.to_bgr(), enhanced.to_gray())
                save_image(comparison, output_dir / f"{image_path.stem}_comparison.png")

        if not args.quiet:
            outcome = result.recognition
            print_question(result.question, f"RESULT: {image_path.name}")
            print(f"Recognition winner: {outcome.winner} "
                  f"(confidence {outcome.confidence:.1f})")
            print(f"Question type: {outcome.classification.question_type} "
                  f"({outcome.classification.detailed_type})")
            print(f"Processing time: {outcome.processing_time_ms} ms")

    if failures == len(images):
        return 1
    return 0


def run_pipeline(args) -> int:
    """Run the exam question recognition pipeline."""
    from utils.assembler import QuestionAssembler
    from utils.io import detect_input_type, ensure_dir, load_image, load_images_from_folder

    start_time = time.time()
    config = build_config(args)

    output_dir = ensure_dir(args.output) if args.output else None

    input_type = "text" if args.text is not None else detect_input_type(args.input)
    logger.info(f"Input type detected: {input_type}")

    if input_type == "text":
        assembler = QuestionAssembler()
        return run_text(args, assembler, output_dir)

    if input_type == "image":
        images = [(Path(args.input), load_image(args.input))]
    elif input_type == "image_folder":
        images = load_images_from_folder(args.input)
    else:
        logger.error(f"Unsupported input type: {args.input}")
        return 1

    if not images:
        logger.error("No images to process")
        return 1

    if not check_dependencies(config.ocr.engine):
        return 1

    assembler = QuestionAssembler(
        profile=config.enhancement_profile(),
        settings=config.recognition_settings()
    )

    exit_code = run_images(args, assembler, images, output_dir, config)

    elapsed = time.time() - start_time
    logger.info(f"Processed {len(images)} image(s) in {elapsed:.2f}s")
    return exit_code


def main():
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    from utils.errors import ExamReconError

    # Run pipeline
    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except (ExamReconError, FileNotFoundError, ValueError) as e:
        logger.error(f"Processing failed: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
