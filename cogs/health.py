import discord
from discord import app_commands
from discord.ext import commands, tasks
import time
import logging

import config

logger = logging.getLogger("HealthMonitor")


class Health(commands.Cog):
    def __init__(self, bot):
        self.bot = bot
        self.start_time = time.time()
        self.heartbeat_loop.start()
        self.stats_loop.start()

    def cog_unload(self):
        self.heartbeat_loop.cancel()
        self.stats_loop.cancel()

    @tasks.loop(seconds=60)
    async def heartbeat_loop(self):
        # Basic liveliness check
        logger.info(f"HEARTBEAT: Bot active for {int(time.time() - self.start_time)}s. Latency: {self.bot.latency * 1000:.2f}ms")

    @tasks.loop(minutes=5)
    async def stats_loop(self):
        stats = self.bot.price_cache.stats()
        logger.info(f"[Price] Cache stats: {stats['size']} cached, {stats['pending']} pending, {stats['queued']} queued")

    @stats_loop.before_loop
    async def before_stats(self):
        await self.bot.wait_until_ready()

    def _uptime(self):
        uptime = int(time.time() - self.start_time)
        hours, remainder = divmod(uptime, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours}h {minutes}m {seconds}s"

    @app_commands.command(name="ping", description="Check bot health and latency")
    async def ping(self, interaction: discord.Interaction):
        await interaction.response.defer()

        latency = self.bot.latency * 1000

        db = self.bot.db
        try:
            db.fetchone("SELECT 1")
            db_status = "✅ Connected"
        except Exception as e:
            db_status = f"❌ Error: {str(e)}"

        embed = discord.Embed(title="🏓 Pong!", color=0x00ff00)
        embed.add_field(name="Latency", value=f"{latency:.2f} ms", inline=True)
        embed.add_field(name="Database", value=db_status, inline=True)
        embed.add_field(name="Uptime", value=self._uptime(), inline=False)

        await interaction.followup.send(embed=embed)

    @app_commands.command(name="sweepstats", description="Global sweeper statistics (owners only)")
    async def sweepstats(self, interaction: discord.Interaction):
        if interaction.user.id not in config.OWNER_IDS:
            return await interaction.response.send_message("❌ You are not authorized to use this command.", ephemeral=True)

        stats = self.bot.registry.stats()
        cache = stats["price_cache"]
        ready = sum(1 for u in self.bot.user_manager.list_users() if u.is_setup_complete)

        embed = discord.Embed(title="📈 Sweeper Stats", color=0x0099ff)
        embed.add_field(name="Users", value=f"{stats.get('total_users', 0)}/{stats.get('max_users', '?')} ({ready} set up)", inline=True)
        embed.add_field(name="Active users", value=str(stats["active_accounts"]), inline=True)
        embed.add_field(name="Active sweepers", value=str(stats["active_sweeps"]), inline=True)
        embed.add_field(name="Price cache", value=f"{cache['size']} cached / {cache['pending']} pending / {cache['queued']} queued", inline=False)
        embed.add_field(name="Processed txs", value=str(stats["processed_transactions"]), inline=True)
        embed.add_field(name="Mode", value="🧪 Testnet" if config.TEST_MODE else "🌐 Mainnet", inline=True)
        embed.add_field(name="Uptime", value=self._uptime(), inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(Health(bot))
