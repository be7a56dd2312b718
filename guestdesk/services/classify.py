from typing import Protocol

BLESSING = "blessing"
QUESTION = "question"
FREEFORM = "freeform"

BLESSING_KEYWORDS = (
    "祝", "恭喜", "幸福", "百年好合", "白头偕老", "恭祝",
    "祝福", "美满", "永结同心", "天长地久", "新婚快乐",
    "早生贵子", "佳偶天成", "喜结连理", "琴瑟和鸣",
)

QUESTION_MARKERS = (
    "?", "？", "请问", "什么", "哪里", "几点", "如何",
    "怎么", "怎样", "为什么", "多少", "谁", "何时",
    "哪儿", "吗", "呢", "能否", "可以", "是否",
)

BLESSING_OPENERS = ("祝", "恭喜")


class MessageClassifier(Protocol):
    def classify(self, text: str) -> str: ...


class KeywordClassifier:
    """Lexicon heuristic: blessing, question or freeform.

    Any question marker beats blessing keywords; a blessing opener only
    decides when neither list matched.
    """

    def __init__(
        self,
        blessing_keywords=BLESSING_KEYWORDS,
        question_markers=QUESTION_MARKERS,
        blessing_openers=BLESSING_OPENERS,
    ):
        self.blessing_keywords = tuple(blessing_keywords)
        self.question_markers = tuple(m.lower() for m in question_markers)
        self.blessing_openers = tuple(blessing_openers)

    def classify(self, text: str) -> str:
        lowered = text.lower()
        has_blessing = any(k in text for k in self.blessing_keywords)
        has_question = any(m in lowered for m in self.question_markers)

        if has_blessing and not has_question:
            return BLESSING
        if has_question:
            return QUESTION
        if text.startswith(self.blessing_openers):
            return BLESSING
        return FREEFORM
