import discord
import logging

logger = logging.getLogger("NotificationService")


class NotificationService:
    def __init__(self, bot):
        self.bot = bot

    async def send_dm(self, user_id, content: str = None, embed: discord.Embed = None):
        """Safe DM sending with error handling"""
        user = self.bot.get_user(int(user_id))
        if user is None:
            try:
                user = await self.bot.fetch_user(int(user_id))
            except discord.NotFound:
                logger.warning(f"User {user_id} not found, dropping notification.")
                return False

        try:
            await user.send(content=content, embed=embed)
            return True
        except discord.Forbidden:
            logger.warning(f"Cannot send DM to {user_id} (DMs closed or blocked).")
            return False
        except discord.HTTPException as e:
            logger.error(f"Failed to send DM to {user_id}: {e}")
            return False

    def notifier_for(self, user_id):
        """Callback that delivers sweep notifications to one user's DMs."""
        async def notify(text):
            await self.send_dm(user_id, content=text)
        return notify
