"""
Symbol Normalization

FX symbols arrive in three spellings:
    canonical  EUR_USD   (config, router allow-lists)
    display    EUR/USD   (price feed keys, decision log)
    raw        EURUSD    (broker / upstream analysis)
"""

MAJOR_PAIRS = frozenset({
    'EUR/USD', 'GBP/USD', 'USD/JPY', 'AUD/USD', 'USD/CAD',
    'EUR/JPY', 'GBP/JPY',
})


def _split(symbol: str):
    s = symbol.strip().upper()
    for sep in ('/', '_', '-'):
        if sep in s:
            base, quote = s.split(sep, 1)
            return base, quote
    if len(s) == 6:
        return s[:3], s[3:]
    return s, ''


def to_display_symbol(symbol: str) -> str:
    base, quote = _split(symbol)
    return f"{base}/{quote}" if quote else base


def to_canonical_symbol(symbol: str) -> str:
    base, quote = _split(symbol)
    return f"{base}_{quote}" if quote else base


def to_raw_symbol(symbol: str) -> str:
    base, quote = _split(symbol)
    return f"{base}{quote}"


def is_major_pair(symbol: str) -> bool:
    return to_display_symbol(symbol) in MAJOR_PAIRS


def pip_scale(price: float) -> float:
    """Price units per pip (JPY crosses quote above 50)"""
    return 0.01 if price > 50 else 0.0001
