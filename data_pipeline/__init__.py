from .frames import PRICE_COLUMNS, quotes_to_frame, write_quotes_csv

__all__ = [
    'PRICE_COLUMNS',
    'quotes_to_frame',
    'write_quotes_csv',
]
