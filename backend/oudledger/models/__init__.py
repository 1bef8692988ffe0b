from .gift_cards import GiftCard, GiftCardTransaction
from .conversions import Material, UnitConversionRule

__all__ = [
    'GiftCard', 'GiftCardTransaction',
    'Material', 'UnitConversionRule',
]
