from enum import Enum, IntEnum
from typing import Optional, Tuple

from solders.pubkey import Pubkey


class DexVersion(IntEnum):
    DEP_DEX_V0 = 0
    DEP_DEX_V1 = 1
    DEX_V2 = 2
    DEX_V3 = 3
    DEX_V4 = 4


DEFAULT_DEX_VERSION = DexVersion.DEX_V3

PROGRAM_LAYOUT_VERSIONS = {
    "4ckmDgGdxQoPDLUkDT3vHgSAkzA3QRdNq5ywwY4sUSJn": DexVersion.DEP_DEX_V0,
    "BJ3jrUzddfuSrZHXSCxMUUQsjKEyLmuuyZebkcaFp2fg": DexVersion.DEP_DEX_V1,
    "EUqojwWA2rd19FZrzeBncJsm38Jm1hEhE3zsmX3bRc2o": DexVersion.DEX_V2,
    "srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX": DexVersion.DEX_V3,
    "opnb2LAfJYbRMAHHvqjCwQxanZn7ReEHp1k81EohpZb": DexVersion.DEX_V4,
}


class Token(Enum):
    SOL = "sol"
    USDC = "usdc"
    SLND = "slnd"
    RAY = "ray"
    ETH = "eth"
    MNDE = "mnde"
    JLP = "jlp"

    @staticmethod
    def from_str(name: str) -> Optional["Token"]:
        try:
            return Token(name.lower())
        except ValueError:
            return None


# (market address, token mint, token)
MARKET_IDS_TO_NAMES = [
    ("8BnEgHoWFysVcuFFX7QztDmzuH8r5ZFvyP3sYwn1XTh6", "So11111111111111111111111111111111111111112", Token.SOL),
    ("8BnEgHoWFysVcuFFX7QztDmzuH8r5ZFvyP3sYwn1XTh6", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", Token.USDC),
    ("HTHMfoxePjcXFhrV74pfCUNoWGe374ecFwiDjPGTkzHr", "SLNDpmoWTVADgEdndyvWzroNL7zSi1dF9PC3xHGtPwp", Token.SLND),
    ("DZjbn4XC8qoHKikZqzmhemykVzmossoayV9ffbsUqxVj", "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R", Token.RAY),
    ("BbJgE7HZMaDp5NTYvRh5jZSkQPVDTU8ubPFtpogUkEj4", "7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs", Token.ETH),
    ("CC9VYJprbxacpiS94tPJ1GyBhfvrLQbUiUSVMWvFohNW", "MNDEFzGvMt87ueuHvVU9VcTqsAP5b3fTGPsHuuPA5ey", Token.MNDE),
    ("ASUyMMNBpFzpW3zDSPYdDVggKajq1DMKFFPK1JS9hoSR", "27G8MtK7VtTcCHkpASjSDdkWWYfoqT6ggEuKidVJidD4", Token.JLP),
]

DEFAULT_V1_MARKET = "8BnEgHoWFysVcuFFX7QztDmzuH8r5ZFvyP3sYwn1XTh6"
DEFAULT_V2_MARKET = "gQN1TNHiqj5x82ZQd7JZ8rm8WD4xwWtXxd4onReWZNK"


def get_layout_version(program_id: Pubkey) -> DexVersion:
    return PROGRAM_LAYOUT_VERSIONS.get(str(program_id), DEFAULT_DEX_VERSION)


def get_program_id(version: DexVersion) -> Pubkey:
    for program_id, v in PROGRAM_LAYOUT_VERSIONS.items():
        if v == version:
            return Pubkey.from_string(program_id)
    return Pubkey.from_string("srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX")


def get_market_name(token: Token) -> Tuple[str, str]:
    """Known market address and token mint for ``token``."""
    for market, mint, value in MARKET_IDS_TO_NAMES:
        if value == token:
            return market, mint
    return DEFAULT_V1_MARKET, "So11111111111111111111111111111111111111112"
