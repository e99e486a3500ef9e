import aiohttp
import discord
from discord import app_commands
from discord.ext import commands, tasks
import logging
from web3.exceptions import Web3Exception

from handlers.utils import detect_address, detect_mnemonic, short_address
from services.errors import CapacityError, InvalidAddressError, SweepConfigError
from services.sweep_engine import to_readable

logger = logging.getLogger("SweeperCog")

CHAIN_CHOICES = [
    app_commands.Choice(name="Ethereum", value="ethereum"),
    app_commands.Choice(name="Polygon", value="polygon"),
    app_commands.Choice(name="Mantle", value="mantle"),
]

KEYWORD_HINTS = {
    "help": "Type `/help` to see everything I can do.",
    "start": "Ready when you are! Use `/start` to begin sweeping your wallet.",
    "stop": "Use `/stop` to pause all of your sweepers.",
    "status": "Use `/status` to see which wallets I'm watching.",
    "balance": "Use `/balance` to check your wallet balance.",
}


class Sweeper(commands.Cog):
    def __init__(self, bot):
        self.bot = bot
        self.registry = bot.registry
        self.users = bot.user_manager
        self.notifications = bot.notifications
        self.price_cache = bot.price_cache
        self.profiles = bot.chain_profiles

        self.cache_eviction_loop.start()
        self.hourly_maintenance_loop.start()

    def cog_unload(self):
        self.cache_eviction_loop.cancel()
        self.hourly_maintenance_loop.cancel()

    # --- Maintenance ---

    @tasks.loop(minutes=10)
    async def cache_eviction_loop(self):
        self.price_cache.clear_expired()

    @tasks.loop(hours=1)
    async def hourly_maintenance_loop(self):
        dropped = self.registry.processed.trim()
        cleaned = self.registry.cleanup_inactive()
        if dropped or cleaned:
            logger.info(f"[Maintenance] Trimmed {dropped} processed tx ids, cleaned {cleaned} inactive users")

    @cache_eviction_loop.before_loop
    @hourly_maintenance_loop.before_loop
    async def before_maintenance(self):
        await self.bot.wait_until_ready()

    # --- Helpers ---

    async def _ensure_user(self, interaction: discord.Interaction):
        """Register on first use and refresh activity; None if there is no room."""
        try:
            user = self.users.register_user(interaction.user.id)
        except CapacityError:
            await interaction.response.send_message(
                f"😔 Sorry! I can only help {self.users.max_users} users at a time and I'm full right now. Please try again later.",
                ephemeral=True)
            return None
        self.registry.touch(interaction.user.id)
        return user

    def _default_chain(self):
        return next(iter(self.profiles))

    # --- Commands ---

    @app_commands.command(name="help", description="How to set up automatic sweeping")
    async def help(self, interaction: discord.Interaction):
        if await self._ensure_user(interaction) is None:
            return

        chains = ", ".join(p.display_name for p in self.profiles.values())
        embed = discord.Embed(
            title="🧹 Auto Sweep Bot",
            description=(
                "I watch your wallet and move any funds worth collecting to your main wallet, automatically.\n\n"
                f"**Supported chains:** {chains}"
            ),
            color=0x0099ff
        )
        embed.add_field(name="1️⃣ Recovery phrase", value="DM me the 12 or 24 word recovery phrase of the wallet to watch.", inline=False)
        embed.add_field(name="2️⃣ Destination", value="DM me the `0x...` address that should receive the funds.", inline=False)
        embed.add_field(name="/start [chain]", value="Start sweeping a chain.", inline=False)
        embed.add_field(name="/stop", value="Stop all of your sweepers.", inline=False)
        embed.add_field(name="/status", value="Show what I'm watching for you.", inline=False)
        embed.add_field(name="/balance [chain]", value="Check your wallet balance.", inline=False)
        embed.add_field(name="/forget", value="Stop everything and delete your stored data.", inline=False)
        embed.set_footer(text="Your recovery phrase is stored encrypted and never shown again.")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="start", description="Start sweeping your wallet on a chain")
    @app_commands.choices(chain=CHAIN_CHOICES)
    async def start(self, interaction: discord.Interaction, chain: app_commands.Choice[str] = None):
        user = await self._ensure_user(interaction)
        if user is None:
            return

        chain_key = chain.value if chain else self._default_chain()
        if chain_key not in self.profiles:
            enabled = ", ".join(self.profiles)
            return await interaction.response.send_message(
                f"❌ {chain_key} is not enabled. Available chains: {enabled}", ephemeral=True)

        if not user.has_secret:
            return await interaction.response.send_message(
                "🔑 First, DM me the recovery phrase of the wallet you want me to watch.", ephemeral=True)
        if not user.destination_address:
            return await interaction.response.send_message(
                "🏦 Almost there! DM me the address where I should send your funds.", ephemeral=True)

        secret = await self.users.get_secret_async(interaction.user.id)
        if secret is None:
            return await interaction.response.send_message(
                "⚠️ I couldn't read your stored recovery phrase. Please send it to me again.", ephemeral=True)

        try:
            started = self.registry.start_sweep(
                interaction.user.id, chain_key, secret, user.destination_address,
                self.notifications.notifier_for(interaction.user.id))
        except SweepConfigError as e:
            logger.warning(f"[Start] {interaction.user.id} on {chain_key}: {e}")
            return await interaction.response.send_message(f"❌ {e}", ephemeral=True)

        name = self.profiles[chain_key].display_name
        if not started:
            return await interaction.response.send_message(
                f"👀 I'm already watching your {name} wallet!", ephemeral=True)
        await interaction.response.send_message(
            f"✅ Sweeper started on {name}. Check your DMs for updates!", ephemeral=True)

    @app_commands.command(name="stop", description="Stop all of your sweepers")
    async def stop(self, interaction: discord.Interaction):
        if await self._ensure_user(interaction) is None:
            return

        stopped = self.registry.stop_all_sweeps(interaction.user.id)
        if stopped:
            msg = f"🛑 Stopped {stopped} sweeper{'s' if stopped != 1 else ''}. Your wallets are no longer being watched."
        else:
            msg = "🤷 You don't have any active sweepers."
        await interaction.response.send_message(msg, ephemeral=True)

    @app_commands.command(name="status", description="Show your sweepers")
    async def status(self, interaction: discord.Interaction):
        user = await self._ensure_user(interaction)
        if user is None:
            return

        sweeps = self.registry.status(interaction.user.id)
        embed = discord.Embed(title="📊 Sweep Status", color=0x2ecc71 if sweeps else 0x95a5a6)
        embed.add_field(name="Recovery phrase", value="✅ Saved" if user.has_secret else "❌ Missing", inline=True)
        embed.add_field(name="Destination", value=short_address(user.destination_address) if user.destination_address else "❌ Missing", inline=True)
        if not sweeps:
            embed.add_field(name="Sweepers", value="None running. Use `/start` to begin.", inline=False)
        for s in sweeps:
            state = "⚙️ sending" if s["executing"] else "👀 watching"
            embed.add_field(
                name=s["name"],
                value=f"{state} `{short_address(s['address'])}`\nChecks: {s['ticks']} (every {int(s['poll_interval'])}s)",
                inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="balance", description="Check your wallet balance")
    @app_commands.choices(chain=CHAIN_CHOICES)
    async def balance(self, interaction: discord.Interaction, chain: app_commands.Choice[str] = None):
        if await self._ensure_user(interaction) is None:
            return

        chain_key = chain.value if chain else self._default_chain()
        profile = self.profiles.get(chain_key)
        client = self.bot.chain_clients.get(chain_key)
        secret = await self.users.get_secret_async(interaction.user.id)
        if profile is None or client is None:
            return await interaction.response.send_message(f"❌ {chain_key} is not enabled.", ephemeral=True)
        if secret is None:
            return await interaction.response.send_message(
                "🔑 DM me your recovery phrase first.", ephemeral=True)

        await interaction.response.defer(ephemeral=True)
        try:
            wallet = client.derive_wallet(secret)
            native = await client.get_native_balance(wallet.address)
            tokens = await client.list_token_balances(wallet.address)
        except SweepConfigError as e:
            return await interaction.followup.send(f"❌ {e}", ephemeral=True)
        except (ConnectionError, OSError, ValueError, Web3Exception, aiohttp.ClientError) as e:
            logger.warning(f"[Balance] {chain_key} lookup failed for {interaction.user.id}: {e}")
            return await interaction.followup.send("⚠️ Couldn't reach the network. Try again in a moment.", ephemeral=True)

        symbols = [t.symbol for t in tokens] + [profile.native_symbol]
        prices = await self.price_cache.get_prices(symbols)
        native_amount = to_readable(native, profile.native_decimals)
        native_price = prices.get(profile.native_symbol.lower(), 0.0)

        embed = discord.Embed(title=f"💼 {profile.display_name} Wallet", description=f"`{wallet.address}`", color=0x9b59b6)
        native_usd = f" (${float(native_amount) * native_price:.2f})" if native_price else ""
        embed.add_field(name=profile.native_symbol, value=f"{native_amount:.6f}{native_usd}", inline=False)
        for t in tokens[:10]:
            amount = to_readable(t.raw_amount, t.decimals)
            price = prices.get(t.symbol.lower(), 0.0)
            usd = f" (${float(amount) * price:.2f})" if price else " (price unknown)"
            embed.add_field(name=t.symbol, value=f"{amount.normalize():f}{usd}", inline=True)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="forget", description="Stop everything and delete your stored data")
    async def forget(self, interaction: discord.Interaction):
        stopped = self.registry.stop_all_sweeps(interaction.user.id)
        deleted = self.users.delete_user(interaction.user.id)
        if deleted:
            msg = f"🗑️ Your data has been deleted ({stopped} sweeper{'s' if stopped != 1 else ''} stopped)."
        else:
            msg = "🤷 I don't have any data stored for you."
        await interaction.response.send_message(msg, ephemeral=True)

    # --- DM auto-detection ---

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is not None:
            return

        content = message.content or ""
        try:
            self.users.register_user(message.author.id)
        except CapacityError:
            return await message.channel.send(
                f"😔 Sorry! I can only help {self.users.max_users} users at a time and I'm full right now.")
        self.registry.touch(message.author.id)

        phrase = detect_mnemonic(content)
        if phrase:
            await self.users.set_secret_async(message.author.id, phrase)
            client = next(iter(self.bot.chain_clients.values()))
            address = client.derive_wallet(phrase).address
            user = self.users.get_user(message.author.id)
            follow_up = ("Use `/start` to begin sweeping!" if user.is_setup_complete
                         else "Now send me the address where your funds should go.")
            return await message.channel.send(
                f"🔐 Recovery phrase saved (encrypted). I'll watch wallet `{short_address(address)}`.\n"
                f"🧹 For your safety, delete your message above.\n\n{follow_up}")

        address = detect_address(content)
        if address:
            try:
                self.users.set_destination(message.author.id, address)
            except InvalidAddressError as e:
                return await message.channel.send(f"❌ {e}")
            user = self.users.get_user(message.author.id)
            follow_up = ("Use `/start` to begin sweeping!" if user.is_setup_complete
                         else "Now send me the recovery phrase of the wallet to watch.")
            return await message.channel.send(
                f"🏦 Destination set to `{short_address(address)}`.\n\n{follow_up}")

        lowered = content.lower()
        for keyword, hint in KEYWORD_HINTS.items():
            if keyword in lowered:
                return await message.channel.send(hint)

        if len(content.split()) >= 12:
            return await message.channel.send(
                "🤔 That looks like a recovery phrase, but it isn't valid. Please check the words and try again.")
        await message.channel.send("👋 Hi! Type `/help` to learn how I can sweep your wallet for you.")


async def setup(bot):
    await bot.add_cog(Sweeper(bot))
