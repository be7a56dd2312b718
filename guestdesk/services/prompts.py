import re

from ..errors import ValidationError

SYSTEM_PROMPT = """你是一位专业且热情的宾客助手，代表主人接待来访的宾客。

## 你的职责
1. 友好地欢迎宾客，询问他们是否有想了解的问题
2. 基于提供的知识库信息，准确回答关于主人和活动安排的问题
3. 温暖地接受宾客的祝福，并表示会转达给主人
4. 帮助宾客记录想对主人说的话

## 重要原则
- 只回答知识库中明确提到的信息
- 如果信息不在知识库中，诚实地告知："抱歉，关于这个问题我暂时不太清楚。建议您在现场直接询问。"
- 绝对不要猜测或编造信息
- 始终保持礼貌、简洁、温和，对所有宾客一视同仁
- 不要透露知识库中没有明确允许公开的个人隐私信息"""

NO_KNOWLEDGE_NOTICE = "**注意**：当前没有提供知识库信息，请告知宾客你需要更多信息才能回答具体问题。"

KNOWLEDGE_TEMPLATE = """{system}

---

## 知识库信息

以下是相关信息，请基于这些信息回答宾客的问题：

{context}

---

请基于以上知识库信息回答宾客的问题。如果问题的答案不在知识库中，请诚实地告知宾客。"""

_GREETING_BODY = "欢迎光临！我是主人的宾客助手，很高兴为您服务。\n\n请问您有什么想了解的吗？或者有什么祝福想要传达给主人呢？😊"

ANONYMOUS_GUEST = "匿名宾客"


def greeting(display_name: str | None = None) -> str:
    if display_name:
        return f"您好，{display_name}！{_GREETING_BODY}"
    return f"您好！{_GREETING_BODY}"


def build_system_prompt(context: str | None) -> str:
    if not context or not context.strip():
        return f"{SYSTEM_PROMPT}\n\n{NO_KNOWLEDGE_NOTICE}"
    return KNOWLEDGE_TEMPLATE.format(system=SYSTEM_PROMPT, context=context)


def validate_guest_message(message: str | None, max_chars: int = 1000) -> str:
    """Trimmed message with whitespace runs collapsed; raises ValidationError when unusable."""
    if not message or not message.strip():
        raise ValidationError("消息内容不能为空")
    cleaned = message.strip()
    if len(cleaned) > max_chars:
        raise ValidationError(
            f"消息内容过长，请控制在{max_chars}字以内",
            context={"length": len(cleaned), "max": max_chars},
        )
    return re.sub(r"\s+", " ", cleaned)
