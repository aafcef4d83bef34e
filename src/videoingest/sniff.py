"""
Magic byte checks for uploaded files, so the declared Content-Type is not
taken on trust.
"""

SNIFF_BYTES = 64

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"

IMAGE_SIGNATURES = {
    "image/png": PNG_SIGNATURE,
    "image/jpeg": JPEG_SIGNATURE,
}


def is_iso_bmff(head):
    # ISO BMFF (MP4) files open with a 'ftyp' box: 4-byte size, then the type.
    return len(head) >= 12 and head[4:8] == b"ftyp"


def image_matches(mimetype, head):
    signature = IMAGE_SIGNATURES.get(mimetype)
    return signature is not None and head.startswith(signature)
