import uuid
import secrets
import string
from datetime import datetime, timezone
import qrcode
from io import BytesIO
import base64

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6


def generate_uuid() -> str:
    return str(uuid.uuid4())

def generate_room_code() -> str:
    """Generates a 6-character alphanumeric room code."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))

def get_utc_now() -> datetime:
    return datetime.now(timezone.utc)

def to_epoch_ms(dt: datetime) -> int:
    """Milliseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)

def generate_qr_code_base64(data: str) -> str:
    """Generates a QR code and returns it as a base64 encoded string."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, format="PNG")
    img_str = base64.b64encode(buffered.getvalue()).decode("utf-8")
    return img_str

def get_frontend_url(cors_origins: list) -> str:
    """Pick the public frontend URL used in join links."""
    # Prefer the first configured origin that is not localhost
    for origin in cors_origins:
        if origin and "localhost" not in origin:
            return origin.rstrip("/")
    if cors_origins and cors_origins[0]:
        return cors_origins[0].rstrip("/")
    return "http://localhost:5173"

def build_join_url(frontend_url: str, room_code: str) -> str:
    return f"{frontend_url}/room/{room_code}"
