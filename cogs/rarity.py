from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import discord
from discord.ext import commands

if TYPE_CHECKING:
    from bot import RarityBot

MAX_TOP = 25


def token_by_rank(ranking: list, rank: int) -> Optional[int]:
    for entry in ranking:
        if entry['rank'] == rank:
            return entry['tokenId']
    return None


def trait_summary(nft_data: dict, trait_type: str) -> Optional[dict]:
    """Score, count and value tally for a trait type, None if unknown.

    Trait types are case sensitive when scored, so an exact name wins and the
    case-insensitive match is only a fallback.
    """
    attrs = [attr for token in nft_data.values() for attr in token['attributes']]
    names = {attr['trait_type'] for attr in attrs}
    if trait_type not in names:
        matches = sorted(name for name in names if name.lower() == trait_type.lower())
        if not matches:
            return None
        trait_type = matches[0]
    summary = None
    for attr in attrs:
        if attr['trait_type'] != trait_type:
            continue
        if summary is None:
            summary = {'trait_type': trait_type, 'score': attr['score'], 'count': attr['traitCount'], 'values': {}}
        value = str(attr.get('value'))
        summary['values'][value] = summary['values'].get(value, 0) + 1
    return summary


class Rarity(commands.Cog):
    def __init__(self, bot: RarityBot):
        self.bot = bot

    @commands.command()
    async def id(self, ctx: commands.Context, id: int):
        if id not in self.bot.nft_data:
            await ctx.send('Unknown token id!')
            return
        await ctx.send(embed=self.bot.create_token_embed(id))

    @commands.command()
    async def rank(self, ctx: commands.Context, rank: int):
        id = token_by_rank(self.bot.ranking, rank)
        if id is None:
            await ctx.send('Invalid rank!')
            return
        await ctx.send(embed=self.bot.create_token_embed(id))

    @commands.command()
    async def top(self, ctx: commands.Context, n: int = 10):
        n = max(1, min(n, MAX_TOP))
        embed = discord.Embed(title=f'Top {n} {self.bot.collection_name}')
        embed.description = '\n'.join(
            f"{entry['rank']}. **#{entry['tokenId']}** ({round(entry['totalRarityScore'], 2)})"
            for entry in self.bot.ranking[:n])
        await ctx.send(embed=embed)

    @commands.command()
    async def trait(self, ctx: commands.Context, *, trait_type: str):
        summary = trait_summary(self.bot.nft_data, trait_type)
        if summary is None:
            await ctx.send('Unknown trait type!')
            return
        embed = discord.Embed(title=summary['trait_type'])
        embed.add_field(name='Score', value=round(summary['score'], 2))
        embed.add_field(name='Count', value=summary['count'])
        values = sorted(summary['values'].items(), key=lambda x: -x[1])
        embed.add_field(name='Values', value='\n'.join(f' - {v}: {c}' for v, c in values[:MAX_TOP]), inline=False)
        await ctx.send(embed=embed)
