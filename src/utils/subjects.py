"""
Subject feature and question-type tables.

Provides:
- SubjectFeatures: keyword / symbol / pattern / context / exclusive tables
- SUBJECT_FEATURES for 数学, 物理, 化学, 语文, 英语, 生物, 历史, 地理
- Question words, multi-answer indicators and ordered question-type indicators
- feature_present(): the single matching rule used by every table

Table entries are plain strings or compiled patterns. Strings made only of
ASCII letters, digits and '/' are matched as whole tokens so that short
symbols such as 'a' or 'N' do not fire inside longer words.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern, Tuple, Union

Feature = Union[str, Pattern]

UNKNOWN_SUBJECT = "未知"
UNKNOWN_TYPE = "未知"

# Feature weights used by subject scoring
KEYWORD_WEIGHT = 1.0
SYMBOL_WEIGHT = 1.0
PATTERN_WEIGHT = 2.0
EXCLUSIVE_WEIGHT = 3.0
CONTEXT_WEIGHT = 0.5

# Below this score the coarse fallback heuristics decide the subject
MIN_SUBJECT_SCORE = 2.0


@dataclass(frozen=True)
class SubjectFeatures:
    keywords: Tuple[Feature, ...] = ()
    symbols: Tuple[Feature, ...] = ()
    patterns: Tuple[Pattern, ...] = ()
    context_words: Tuple[Feature, ...] = ()
    exclusive_features: Tuple[Feature, ...] = ()


# ============================================================================
# Matching
# ============================================================================

_TOKEN_ITEM = re.compile(r'[A-Za-z0-9/]+')
_token_cache: Dict[str, Pattern] = {}


def _token_pattern(item: str) -> Pattern:
    pattern = _token_cache.get(item)
    if pattern is None:
        flags = re.IGNORECASE if len(item) > 1 and item.islower() else 0
        pattern = re.compile(
            r'(?<![A-Za-z0-9])' + re.escape(item) + r'(?![A-Za-z0-9])', flags
        )
        _token_cache[item] = pattern
    return pattern


def feature_present(text: str, item: Feature) -> bool:
    """Whether a table entry occurs in the text."""
    if isinstance(item, str):
        if _TOKEN_ITEM.fullmatch(item):
            return _token_pattern(item).search(text) is not None
        return item in text
    return item.search(text) is not None


def count_present(text: str, items) -> int:
    """Number of distinct table entries present in the text."""
    return sum(1 for item in items if feature_present(text, item))


def _unit(symbol: str) -> Pattern:
    # Physical units only count when attached to a number
    return re.compile(r'\d\s*' + re.escape(symbol) + r'(?![A-Za-z])')


# ============================================================================
# Subject Tables
# ============================================================================

SUBJECT_FEATURES: Dict[str, SubjectFeatures] = {
    "数学": SubjectFeatures(
        keywords=(
            "函数", "方程", "不等式", "集合", "概率", "统计", "几何", "代数",
            "三角", "导数", "积分", "微分", "向量", "矩阵", "数列", "级数",
            "已知", "求", "证明", "计算", "使得", "满足", "子集", "交集",
            "并集", "补集", "定义域", "值域", "单调", "周期", "奇偶", "零点",
            "最值", "极值", "渐近线", "实数", "有理数", "无理数", "整数",
            "自然数", "复数", "虚数", "平面", "直线", "椭圆", "双曲线",
            "抛物线", "角度", "弧度", "正弦", "余弦", "正切", "对数", "指数",
        ),
        symbols=(
            "=", "≠", "≤", "≥", "<", ">", "+", "×", "÷", "∞", "√",
            "²", "³", "x", "y", "z", "f", "g", "π", "α", "β", "γ", "θ",
            "∈", "∉", "∩", "∪", "⊂", "⊃", "∅", "∠", "∴", "∵", "∫", "∑", "∏",
            "sin", "cos", "tan", "log", "ln", "lim", "∇", "∂", "°", "′", "″",
        ),
        patterns=(
            re.compile(r'(?<![A-Za-z])[xyz]\s*[²³]?\s*[+\-=≤≥<>≠]\s*[\d\-]'),
            re.compile(r'\{[^}]*[xyz][^}]*\|[^}]*\}'),
            re.compile(r'[∩∪∈∉⊂⊃]'),
            re.compile(r'(?<![A-Za-z])(sin|cos|tan|log|ln)\s*[xyz(α-ω]'),
            re.compile(r'已知.*(?<![A-Za-z])[xyz](?![A-Za-z])'),
            re.compile(r'求.*(?<![A-Za-z])[xyz](?![A-Za-z])'),
            re.compile(r'当.*[><=≤≥].*时'),
            re.compile(r'\(\s*[\d\-]+\s*,\s*[\d\-]+\s*\)'),
        ),
        context_words=(
            "题", "选择", "填空", "计算", "证明", "解答", "求解", "化简",
            "比较", "判断", "作图", "画出", "求出", "确定", "验证",
        ),
        exclusive_features=("≠", "≤", "≥", "∞", "√", "∫", "∑", "π"),
    ),

    "物理": SubjectFeatures(
        keywords=(
            "力", "速度", "加速度", "质量", "密度", "压强", "功率", "能量",
            "动能", "势能", "重力", "摩擦力", "弹力", "浮力", "压力", "冲量",
            "动量", "牛顿", "胡克", "阿基米德", "帕斯卡", "电流", "电压",
            "电阻", "电容", "电感", "磁场", "电场", "电荷", "库仑", "欧姆",
            "安培", "伏特", "瓦特", "焦耳", "法拉第", "温度", "热量", "比热",
            "熔点", "沸点", "蒸发", "凝固", "反射", "折射", "衍射", "干涉",
            "透镜", "棱镜", "波长", "频率", "振幅", "半衰期",
        ),
        symbols=(
            "ρ", "μ", "ε", "λ", "ν", "ω", "φ", "Ω", "Hz", "Pa",
            "m/s", "km/h", "kg",
        ),
        patterns=(
            re.compile(r'(?<![A-Za-z])[vafmPEUIFR]\s*=\s*[\dA-Za-z]'),
            re.compile(r'\d+\s*(m/s|km/h|kg|N|J|W|V|A|Ω|Hz|Pa|°C|K)(?![A-Za-z])'),
            re.compile(r'电路|磁场|重力|摩擦'),
            re.compile(r'实验.*测量'),
            re.compile(r'物体.*运动'),
        ),
        context_words=(
            "实验", "测量", "观察", "推导", "验证", "探究", "现象", "规律",
            "定律", "公式", "单位",
        ),
        exclusive_features=tuple(
            _unit(u) for u in ("N", "J", "W", "V", "A", "Ω", "Hz", "Pa", "°C", "m/s")
        ),
    ),

    "化学": SubjectFeatures(
        keywords=(
            "原子", "分子", "离子", "化合价", "反应", "溶液", "浓度", "摩尔",
            "元素", "周期表", "同位素", "化学键", "化学式", "方程式", "配平",
            "氧化", "还原", "中和", "沉淀", "气体", "燃烧", "分解", "化合",
            "置换", "复分解", "烷烃", "烯烃", "炔烃", "醇", "醛", "酮", "酯",
            "聚合", "加成", "取代", "消去", "水解", "试剂", "指示剂",
            "催化剂", "滴定", "蒸馏", "萃取", "结晶",
        ),
        symbols=(
            "He", "Li", "Be", "Ne", "Na", "Mg", "Al", "Si", "Cl", "Ar", "Ca",
            "Fe", "Cu", "Zn", "Ag", "Au", "Hg", "Pb", "Br",
            "H₂O", "CO₂", "NaCl", "H₂SO₄", "HCl", "NaOH", "CaCO₃",
            "NH₃", "CH₄", "C₂H₆", "C₂H₄", "C₆H₆", "O₂", "H₂",
        ),
        patterns=(
            re.compile(r'[A-Z][a-z]?[₂₃₄₅₆]'),
            re.compile(r'[A-Z][a-z]?[₂₃₄]?\s*[+]\s*[A-Z][a-z]?[₂₃₄]?\s*(?:[→=⇌]|\+)'),
            re.compile(r'[→⇌]'),
            re.compile(r'pH\s*[=<>≈]'),
            re.compile(r'mol/L|g/mol|mol·L'),
            re.compile(r'实验.*反应'),
        ),
        context_words=(
            "反应", "实验", "元素", "化学反应", "化学式", "配平", "推断",
            "现象", "条件",
        ),
        exclusive_features=("H₂O", "CO₂", "NaCl", "H₂SO₄", "mol", "pH"),
    ),

    "语文": SubjectFeatures(
        keywords=(
            "诗歌", "古诗", "文言文", "古文", "散文", "小说", "记叙文",
            "说明文", "议论文", "应用文", "戏剧", "传记", "作者", "文章",
            "段落", "中心思想", "主旨", "主题", "情感", "修辞", "表达方式",
            "写作手法", "艺术手法", "表现手法", "比喻", "拟人", "排比",
            "对偶", "夸张", "设问", "反问", "成语", "词语", "句子", "语法",
            "汉字", "拼音", "笔画", "部首", "偏旁", "阅读", "理解", "概括",
            "归纳", "赏析", "评价", "体会", "品味", "鉴赏",
        ),
        symbols=("《", "》", "〈", "〉", "……"),
        patterns=(
            re.compile(r'阅读.*材料'),
            re.compile(r'文中.*意思'),
            re.compile(r'作者.*表达'),
            re.compile(r'修辞.*作用'),
            re.compile(r'古诗.*赏析'),
        ),
        context_words=(
            "阅读", "理解", "作文", "默写", "古诗", "文言文", "概括", "赏析",
            "背诵", "朗读", "书写",
        ),
        exclusive_features=("古诗", "文言文", "修辞", "主旨", "默写"),
    ),

    "英语": SubjectFeatures(
        keywords=(
            "grammar", "tense", "verb", "noun", "adjective", "adverb",
            "pronoun", "preposition", "conjunction", "clause", "reading",
            "comprehension", "passage", "paragraph", "sentence", "phrase",
            "meaning", "writing", "essay", "letter", "composition", "story",
            "dialogue", "conversation", "vocabulary", "spelling",
            "pronunciation", "synonym", "antonym", "translation",
        ),
        symbols=(
            "the", "is", "are", "was", "were", "have", "has", "had",
            "will", "would", "can", "could", "may", "might", "must", "should",
        ),
        patterns=(
            re.compile(r'(?:[A-Za-z]+[ ,]+){3,}[A-Za-z]+'),
            re.compile(r'read.*passage', re.IGNORECASE),
            re.compile(r'choose.*(?:correct|best)', re.IGNORECASE),
            re.compile(r'complete.*sentence', re.IGNORECASE),
            re.compile(r'translate.*Chinese', re.IGNORECASE),
            re.compile(r'according.*passage', re.IGNORECASE),
        ),
        context_words=(
            "read", "choose", "complete", "fill", "translate", "write",
            "answer", "question", "listening", "speaking",
        ),
        exclusive_features=("passage", "reading", "comprehension", "grammar", "vocabulary"),
    ),

    "生物": SubjectFeatures(
        keywords=(
            "细胞", "细胞膜", "细胞壁", "细胞核", "细胞质", "线粒体", "叶绿体",
            "核糖体", "内质网", "高尔基体", "基因", "染色体", "遗传", "变异",
            "突变", "杂交", "显性", "隐性", "基因型", "表现型", "等位基因",
            "呼吸", "消化", "循环", "排泄", "神经", "内分泌", "免疫",
            "新陈代谢", "光合作用", "呼吸作用", "生态系统", "食物链",
            "食物网", "生产者", "消费者", "分解者", "种群", "群落", "进化",
        ),
        symbols=("ATP", "ADP", "DNA", "RNA", "C₆H₁₂O₆"),
        patterns=(
            re.compile(r'细胞.*结构'),
            re.compile(r'基因.*遗传'),
            re.compile(r'生物.*实验'),
            re.compile(r'植物.*动物'),
            re.compile(r'ATP.*ADP'),
        ),
        context_words=(
            "生物", "实验", "观察", "培养", "显微镜", "标本", "研究", "探究",
        ),
        exclusive_features=("细胞", "DNA", "RNA", "ATP", "基因", "染色体"),
    ),

    "历史": SubjectFeatures(
        keywords=(
            "秦汉", "魏晋", "隋唐", "宋元", "明清", "春秋", "战国", "皇帝",
            "朝代", "封建", "农民起义", "变法", "改革", "鸦片战争", "洋务运动",
            "戊戌变法", "辛亥革命", "五四运动", "新文化运动", "抗日战争",
            "解放战争", "古希腊", "古罗马", "中世纪", "文艺复兴", "启蒙运动",
            "工业革命", "法国大革命", "第一次世界大战", "第二次世界大战",
        ),
        symbols=("世纪", "公元", "BC", "AD"),
        patterns=(
            re.compile(r'公元.*\d+年'),
            re.compile(r'\d+世纪'),
            re.compile(r'历史.*事件'),
            re.compile(r'朝代.*皇帝'),
        ),
        context_words=(
            "历史", "时代", "事件", "人物", "制度", "文化", "政治", "经济",
            "社会", "影响", "意义",
        ),
        exclusive_features=("朝代", "皇帝", "革命", "战争", "变法"),
    ),

    "地理": SubjectFeatures(
        keywords=(
            "地形", "地貌", "山脉", "平原", "高原", "盆地", "丘陵", "河流",
            "湖泊", "海洋", "气候", "降水", "季风", "地震", "火山", "板块",
            "岩石", "土壤", "人口", "城市", "农业", "工业", "交通", "民族",
            "经度", "纬度", "比例尺", "图例",
        ),
        symbols=("km", "mm"),
        patterns=(
            re.compile(r"\d+°\s*\d*['′]?\s*[NS](?![A-Za-z])"),
            re.compile(r"\d+°\s*\d*['′]?\s*[EW](?![A-Za-z])"),
            re.compile(r'地理.*位置'),
            re.compile(r'气候.*特点'),
            re.compile(r'地形.*特征'),
        ),
        context_words=(
            "地理", "地图", "位置", "分布", "特征", "因素", "资源", "环境",
        ),
        exclusive_features=("经度", "纬度", "地形", "气候", "地图"),
    ),
}

SUBJECTS: Tuple[str, ...] = tuple(SUBJECT_FEATURES)

# Symbols counted by the classifier's "has subject symbols" feature
SCIENCE_SYMBOLS: Tuple[Feature, ...] = (
    SUBJECT_FEATURES["数学"].symbols
    + SUBJECT_FEATURES["物理"].symbols
    + SUBJECT_FEATURES["化学"].symbols
)


# ============================================================================
# Question Detection Tables
# ============================================================================

QUESTION_WORDS: Tuple[str, ...] = (
    "已知", "设", "求", "证明", "计算", "解", "若", "则", "试", "问",
    "选择", "判断", "填空", "简答", "分析", "说明", "讨论", "比较",
    "which", "what", "why", "how", "choose",
)

MULTI_CHOICE_INDICATORS: Tuple[str, ...] = (
    "下列正确的是", "下列错误的是", "正确的有", "错误的有",
    "符合条件的是", "不符合条件的是", "属于", "不属于",
    "包括", "不包括", "可能", "一定", "选择所有", "多选",
    "which of the following are",
)

# Ordered: first matching type wins
TYPE_INDICATORS: List[Tuple[str, Tuple[str, ...]]] = [
    ("填空题", ("填空", "空格", "______", "____", "（）", "( )", "___", "完成下列")),
    ("解答题", ("解答", "计算", "求解", "求出", "解下列", "计算下列")),
    ("证明题", ("证明", "求证")),
    ("实验题", ("实验", "测量", "观察", "记录", "操作")),
    ("作图题", ("作图", "画图", "绘制", "画出")),
    ("阅读理解", ("阅读下列", "根据短文", "passage", "reading")),
    ("完形填空", ("完形填空", "cloze", "空白处")),
    ("翻译", ("翻译", "translate", "英译汉", "汉译英")),
    ("作文", ("作文", "写作", "composition", "writing", "essay", "书面表达")),
    ("判断题", ("判断", "对错", "是否正确")),
    ("语法填空", ("语法填空", "grammar", "用适当形式")),
    ("改错", ("改错", "error", "correction", "找出错误")),
    ("文言文阅读", ("文言文", "古文", "文言")),
    ("现代文阅读", ("现代文", "散文", "小说", "记叙文")),
    ("古代诗歌阅读", ("诗歌", "古诗", "诗词")),
    ("名篇名句默写", ("默写", "补写")),
]

# Detailed types that denote a reading-style composite question
READING_TYPES: Tuple[str, ...] = (
    "阅读理解", "完形填空", "文言文阅读", "现代文阅读", "古代诗歌阅读",
)

SUBJECTIVE_FALLBACK: Dict[str, str] = {
    "语文": "现代文阅读",
    "英语": "阅读理解",
    "数学": "解答题",
    "物理": "解答题",
    "化学": "解答题",
}

COMPOSITE_FALLBACK: Dict[str, str] = {
    "语文": "现代文阅读",
    "英语": "阅读理解",
}

SINGLE_CHOICE = "单选题"
MULTIPLE_CHOICE = "多选题"
ENGLISH_SINGLE_CHOICE = "单项选择"
SUBJECTIVE_DEFAULT = "主观题"
COMPOSITE_DEFAULT = "综合题"

MULTI_CHOICE_SUBJECTS: Tuple[str, ...] = ("数学", "物理", "化学")
