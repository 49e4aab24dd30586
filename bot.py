import logging
from collections import defaultdict
from pathlib import Path

import click
import discord
from discord.ext import commands

import cogs
from pipeline import DEFAULT_CONFIG_PATH, load_config, load_document

logger = logging.getLogger(__name__)


def load_collection(path):
    data = load_document(path)
    logger.info('Loaded %d tokens', len(data['metadata']))
    return data


def create_token_embed(token_id: int, token: dict, nr_tokens: int, name: str, contract_address: str):
    embed = discord.Embed(title=f'{name} #{token_id}')
    embed.description = f'[Opensea](https://opensea.io/assets/ethereum/{contract_address}/{token_id})'
    if token.get('image'):
        embed.set_image(url=token['image'])
    rarity = token['rarity']
    embed.add_field(name='Rarity Score', value=round(rarity['totalRarityScore'], 2))
    embed.add_field(name='Rank', value=f"{rarity['rank']}/{nr_tokens}")
    attributes_list_str = []
    for attr in sorted(token['attributes'], key=lambda a: -a['score']):
        attributes_list_str.append(f" - {attr['trait_type']}: {attr.get('value')} ({round(attr['score'], 2)})")
    embed.add_field(name='Attributes', value='\n'.join(attributes_list_str) or 'None', inline=False)
    return embed


class DisabledInChannel(commands.DisabledCommand):
    pass


class RarityBot(commands.Bot):
    def __init__(self, data_path: str, config_path: str = DEFAULT_CONFIG_PATH):
        config = load_config(config_path)
        bot_data = config['bot']
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(command_prefix=bot_data['command_prefix'], intents=intents, case_insensitive=True)
        self.before_invoke(self._before_invoke_impl)

        self.nr_calls = defaultdict(int)
        self.collection_name = config['collection'].get('name', 'Token')
        self.contract_address = config['collection']['contract_address']
        self.disabled_channels = set(bot_data.get('disabled_channels') or [])
        self.command_help = bot_data.get('commands') or {}
        data = load_collection(Path(data_path))
        self.nft_data = data['metadata']
        self.ranking = data['rarity']

    async def setup_hook(self):
        await self.add_cog(cogs.Rarity(self))
        for command, command_help in self.command_help.items():
            for k, v in command_help.items():
                setattr(self.get_command(command), k, v)
        logger.info('Bot initialized')

    async def on_command_error(self, ctx: commands.Context, error):
        if isinstance(error, DisabledInChannel):
            return
        logger.error('Error on command %r: %r', ctx.message.content, error)
        await ctx.send(f'Invalid command or argument. Check {ctx.prefix}'
                       f'help to see available commands and how to use them.')

    async def _before_invoke_impl(self, ctx: commands.Context):
        if ctx.channel.id in self.disabled_channels:
            raise DisabledInChannel
        self.nr_calls['total'] += 1
        self.nr_calls[ctx.command.name] += 1
        if (self.nr_calls['total'] % 100) == 0:
            logger.info('Command calls: %s', dict(self.nr_calls))

    def create_token_embed(self, token_id: int):
        return create_token_embed(token_id, self.nft_data[token_id], len(self.nft_data),
                                  self.collection_name, self.contract_address)


@click.command('Rarity Bot')
@click.option('--bot-token', required=True)
@click.option('--data-file', required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_PATH, type=click.Path(exists=True, dir_okay=False))
def main(bot_token: str, data_file: str, config_path: str):
    bot = RarityBot(data_file, config_path)
    bot.run(bot_token)


if __name__ == '__main__':
    main(auto_envvar_prefix='RARITY')
