import discord
from discord.ext import commands
from discord import app_commands
import asyncio
import os
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler("bot.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger("SweepBot")

# internal modules
import config
from services.db_manager import DBManager
from services.dedup_service import ProcessedTransactionSet
from services.gas_service import GasBudgeter
from services.nonce_manager import NonceManager
from services.notification_service import NotificationService
from services.price_service import CoinGeckoOracle, PriceCache
from services.rpc_service import RPCManager
from services.sweep_registry import SweepRegistry
from services.user_service import UserManager
from wallet.evm import EvmChainClient

bot = commands.AutoShardedBot(command_prefix="!", intents=discord.Intents.all(), help_command=None)


@bot.tree.error
async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
    """Global error handler for all application commands."""
    if isinstance(error, app_commands.CommandOnCooldown):
        msg = f"⏱️ **Cooldown Active**\nPlease wait `{error.retry_after:.1f}s` before using this command again."
    else:
        logger.error(f"[Interaction Error] {error}", exc_info=error)
        msg = "⚠️ **System Error**\nAn unexpected error occurred. Please try again later."

    try:
        if interaction.response.is_done():
            await interaction.followup.send(msg, ephemeral=True)
        else:
            await interaction.response.send_message(msg, ephemeral=True)
    except discord.HTTPException as e:
        logger.warning(f"[Interaction Error] Could not report failure to user: {e}")


def build_services():
    """Wire configuration into the sweep services and attach them to the bot."""
    profiles = config.get_chain_profiles()
    if not profiles:
        raise SystemExit(f"No usable chains in ENABLED_CHAINS={','.join(config.ENABLED_CHAINS)}")

    nonce_manager = NonceManager()
    rpc_manager = RPCManager()
    bot.chain_profiles = profiles
    bot.chain_clients = {
        key: EvmChainClient(profile, nonce_manager=nonce_manager, rpc_manager=rpc_manager)
        for key, profile in profiles.items()
    }
    bot.rpc_manager = rpc_manager

    bot.price_cache = PriceCache(
        CoinGeckoOracle(config.COINGECKO_API_URL),
        ttl=config.PRICE_CACHE_TTL,
        rate_limit_delay=config.PRICE_RATE_LIMIT_DELAY,
        batch_size=config.PRICE_BATCH_SIZE,
        max_retries=config.PRICE_MAX_RETRIES,
        retry_delay=config.PRICE_RETRY_DELAY,
        evict_after=config.PRICE_EVICT_AFTER,
    )

    bot.db = DBManager(config.DATABASE_URL)
    bot.user_manager = UserManager(bot.db, config.ENCRYPTION_KEY, max_users=config.MAX_USERS)
    bot.notifications = NotificationService(bot)
    bot.registry = SweepRegistry(
        bot.chain_clients,
        profiles,
        bot.price_cache,
        GasBudgeter(),
        ProcessedTransactionSet(config.PROCESSED_TX_SOFT_CAP, config.PROCESSED_TX_KEEP),
        users=bot.user_manager,
        confirmation_timeout=config.CONFIRMATION_TIMEOUT,
        inactive_hours=config.INACTIVE_USER_HOURS,
    )

    mode = "TESTNET" if config.TEST_MODE else "MAINNET"
    chains = ", ".join(p.name for p in profiles.values())
    logger.info(f"[Startup] {mode} mode, chains: {chains}, max users: {config.MAX_USERS}")
    if config.ENCRYPTION_KEY == config.DEFAULT_ENCRYPTION_KEY:
        logger.warning("[Startup] ENCRYPTION_KEY is not set, stored recovery phrases use the default key!")


async def setup_hook():
    build_services()

    # Load Cogs
    for filename in sorted(os.listdir('./cogs')):
        if filename.endswith('.py'):
            extension = f'cogs.{filename[:-3]}'
            await bot.load_extension(extension)
            logger.info(f"Loaded extension: {extension}")

    bot.warmup_task = asyncio.create_task(bot.price_cache.warm_up(config.PRICE_WARMUP_SYMBOLS))
    bot.warmup_task.add_done_callback(_log_warmup_result)


def _log_warmup_result(task):
    if task.cancelled():
        return
    if task.exception() is not None:
        logger.error(f"[Prices] Warm-up failed: {task.exception()}")


bot.setup_hook = setup_hook


@bot.event
async def on_ready():
    logger.info(f"Logged in as {bot.user}")
    synced = await bot.tree.sync()
    logger.info(f"[Startup] Global command tree synced ({len(synced)} commands).")


async def close_services():
    """Stop sweepers and release network sessions."""
    if getattr(bot, "registry", None) is None:
        return
    warmup = getattr(bot, "warmup_task", None)
    if warmup is not None and not warmup.done():
        warmup.cancel()
    logger.info("[Shutdown] Stopping all sweepers...")
    await bot.registry.shutdown()
    await bot.price_cache.close()
    await bot.rpc_manager.close()
    for client in bot.chain_clients.values():
        await client.close()
    bot.db.close()


async def main():
    async with bot:
        try:
            await bot.start(config.TOKEN)
        finally:
            await close_services()


if __name__ == "__main__":
    if not config.TOKEN:
        raise SystemExit("DISCORD_TOKEN is not set")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("[Shutdown] Interrupted, bye.")
