from construct import Adapter, Bytes, BytesInteger, Construct, ConstructError
from solders.pubkey import Pubkey

from openbook.errors import DecodeError


class PublicKeyAdapter(Adapter):
    def __init__(self):
        super().__init__(Bytes(32))

    def _decode(self, obj, context, path):
        return Pubkey(obj)

    def _encode(self, obj, context, path):
        return bytes(obj)


PUBLIC_KEY = PublicKeyAdapter()
U128 = BytesInteger(16, signed=False, swapped=True)


def parse(layout: Construct, data: bytes, what: str, offset: int = 0):
    """Parse ``data[offset:]``, raising DecodeError on short or malformed input."""
    size = layout.sizeof()
    if len(data) < offset + size:
        raise DecodeError(f"{what}: need {offset + size} bytes, got {len(data)}")
    try:
        return layout.parse(data[offset:offset + size])
    except ConstructError as e:
        raise DecodeError(f"{what}: {e}") from e
