"""Default chat message templates (Thai)."""

EXPIRED_TEMPLATE = (
    "แจ้งเตือน: License ของคุณ ({license}) หมดอายุแล้ว "
    "กรุณาติดต่อเจ้าหน้าที่เพื่อขยายเวลาใช้งาน"
)

SUSPENDED_TEMPLATE = (
    "แจ้งเตือน: License ของคุณ ({license}) ถูกระงับการใช้งาน "
    "กรุณาติดต่อเจ้าหน้าที่เพื่อตรวจสอบ"
)

# Keyed by days left, clamped to 1..3
NEARLY_EXPIRED_TEMPLATES = {
    1: (
        "แจ้งเตือน: License ของคุณ ({license}) จะหมดอายุภายใน 1 วัน "
        "({expire_date}) กรุณาต่ออายุโดยด่วน"
    ),
    2: (
        "แจ้งเตือน: License ของคุณ ({license}) จะหมดอายุในอีก 2 วัน "
        "({expire_date}) กรุณาติดต่อเจ้าหน้าที่เพื่อต่ออายุ"
    ),
    3: (
        "แจ้งเตือน: License ของคุณ ({license}) จะหมดอายุในอีก 3 วัน "
        "({expire_date}) กรุณาติดต่อเจ้าหน้าที่เพื่อต่ออายุ"
    ),
}

NEARLY_EXPIRED_FALLBACK = (
    "แจ้งเตือน: License ของคุณ ({license}) ใกล้หมดอายุแล้ว "
    "กรุณาติดต่อเจ้าหน้าที่เพื่อต่ออายุ"
)

LINK_CONFIRMATION_TEMPLATE = (
    "เชื่อมต่อบัญชีเลขที่ {account_number} (License {license}) "
    "กับ LINE ของคุณเรียบร้อยแล้ว ✅\n"
    "ระบบจะแจ้งเตือนเมื่อ License ใกล้หมดอายุ"
)

WELCOME_TEMPLATE = (
    "สวัสดีครับ {display_name}! 👋\n\n"
    "ส่งเลขบัญชีของคุณมาที่แชทนี้ "
    "เพื่อรับการแจ้งเตือนเมื่อ License ใกล้หมดอายุครับ 📝"
)


def text_message(text: str) -> dict:
    """Wrap text in a LINE text message object."""
    return {"type": "text", "text": text}
