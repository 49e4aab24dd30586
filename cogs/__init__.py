from cogs.rarity import Rarity

__all__ = ['Rarity']
