import discord
from discord.ext import commands, tasks
import logging
import asyncio
import functools
import os
from pathlib import Path
from typing import Dict, Optional

from .battle_controller import BattleController
from .config_manager import ConfigManager
from .data_manager import DataManager
from .economy import EconomyOrchestrator
from .errors import (
    InsufficientFundsError, InvalidStateError, ItemNotEquippedError,
    ItemNotFoundError, PersistenceError, QuizBattleError
)
from .level_system import progress_to_next_level, xp_to_next_level
from .models import BattleSession, BattleStatus

ANSWER_LABELS = "ABCDEFGH"


def setup_logging():
    """Set up logging for debugging and monitoring."""
    logs_dir = Path("logs")
    logs_dir.mkdir(exist_ok=True)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(logs_dir / "bot.log", encoding='utf-8'),
        ]
    )

    error_handler = logging.FileHandler(logs_dir / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s\n%(exc_info)s'
    ))
    logging.getLogger().addHandler(error_handler)

    logging.getLogger('discord').setLevel(logging.WARNING)  # Reduce discord.py noise
    logging.getLogger('discord.http').setLevel(logging.WARNING)

    return logging.getLogger(__name__)


logger = setup_logging()


class AnswerView(discord.ui.View):
    """One button per answer for a single battle question."""

    def __init__(self, bot: "QuizBattleBot", user_id: str, question_index: int,
                 answers, timeout: float = 300):
        super().__init__(timeout=timeout)
        self.bot = bot
        self.user_id = str(user_id)
        self.question_index = question_index

        for i, answer in enumerate(answers):
            label = f"{ANSWER_LABELS[i % len(ANSWER_LABELS)]}) {answer}"
            button = discord.ui.Button(
                label=label[:80],
                style=discord.ButtonStyle.primary,
                custom_id=f"answer_{user_id}_{question_index}_{i}",
                row=i // 5
            )
            button.callback = functools.partial(self.answer_selected, answer_index=i)
            self.add_item(button)

    async def answer_selected(self, interaction: discord.Interaction, answer_index: int):
        if str(interaction.user.id) != self.user_id:
            await interaction.response.send_message("❌ You can only answer in your own battle!", ephemeral=True)
            return
        await self.bot.handle_answer(interaction, answer_index, self.question_index)


class QuizBattleBot(commands.Bot):
    """Discord bot running quiz battles and the reward economy."""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.controllers: Dict[str, BattleController] = {}
        self.economies: Dict[str, EconomyOrchestrator] = {}
        self.battle_messages: Dict[str, discord.Message] = {}
        self._rendered: Dict[str, tuple] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager(self.app_config)
            self.data_manager = DataManager(self.config_manager.get_data_directory())

            await self.load_question_data()
            await self.setup_commands()
            self.expire_effects_loop.start()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def load_question_data(self):
        """Load question files from the data directory"""
        try:
            pool = self.data_manager.load_question_files()
            summary = self.data_manager.get_loading_summary()
            logger.info(
                f"Loaded {summary['total_questions']} questions from {len(pool)} files "
                f"in {summary['data_directory']}"
            )
        except PersistenceError as e:
            logger.error(f"Error loading question data: {e}")

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="battle", description="Start a quiz battle against a bot opponent")
        async def battle_command(interaction: discord.Interaction):
            await self.handle_battle(interaction)

        @self.tree.command(name="dismiss", description="Abandon your current battle")
        async def dismiss_command(interaction: discord.Interaction):
            await self.handle_dismiss(interaction)

        @self.tree.command(name="profile", description="Show your level, XP and coins")
        async def profile_command(interaction: discord.Interaction):
            await self.handle_profile(interaction)

        @self.tree.command(name="stats", description="Show your battle statistics")
        async def stats_command(interaction: discord.Interaction):
            await self.handle_stats(interaction)

        @self.tree.command(name="inventory", description="List your items")
        async def inventory_command(interaction: discord.Interaction):
            await self.handle_inventory(interaction)

        @self.tree.command(name="store", description="Browse items for sale")
        async def store_command(interaction: discord.Interaction):
            await self.handle_store(interaction)

        @self.tree.command(name="buy", description="Buy an item from the store")
        async def buy_command(interaction: discord.Interaction, item_id: str):
            await self.handle_buy(interaction, item_id)

        @self.tree.command(name="equip", description="Equip an item from your inventory")
        async def equip_command(interaction: discord.Interaction, item_id: str):
            await self.handle_equip(interaction, item_id)

        @self.tree.command(name="use_item", description="Activate the effects of an equipped item")
        async def use_item_command(interaction: discord.Interaction, item_id: str):
            await self.handle_use_item(interaction, item_id)

        @self.tree.command(name="effects", description="Show your active boosts")
        async def effects_command(interaction: discord.Interaction):
            await self.handle_effects(interaction)

        @self.tree.command(name="quests", description="Show your quest progress")
        async def quests_command(interaction: discord.Interaction):
            await self.handle_quests(interaction)

        @self.tree.command(name="achievements", description="Show your achievements")
        async def achievements_command(interaction: discord.Interaction):
            await self.handle_achievements(interaction)

        @self.tree.command(name="set_questions", description="Set the number of questions per battle")
        async def set_questions_command(interaction: discord.Interaction, number: int):
            await self.handle_set_questions(interaction, number)

        @self.tree.command(name="set_timer", description="Set the time limit per question (5-300 seconds)")
        async def set_timer_command(interaction: discord.Interaction, seconds: int):
            await self.handle_set_timer(interaction, seconds)

        logger.info("Slash commands registered successfully")

    # Per-user state

    async def get_economy(self, user: discord.abc.User) -> EconomyOrchestrator:
        user_id = str(user.id)
        economy = self.economies.get(user_id)
        if economy is None:
            economy = await EconomyOrchestrator.load(
                user_id, self.data_manager, self.config_manager,
                username=getattr(user, 'display_name', None)
            )
            self.economies[user_id] = economy
        return economy

    async def get_controller(self, user: discord.abc.User) -> BattleController:
        user_id = str(user.id)
        controller = self.controllers.get(user_id)
        if controller is None:
            economy = await self.get_economy(user)
            controller = BattleController(user_id, self.data_manager, self.config_manager, economy)
            controller.add_listener(functools.partial(self.on_session_update, user_id))
            self.controllers[user_id] = controller
        return controller

    @tasks.loop(seconds=15)
    async def expire_effects_loop(self):
        for user_id, economy in list(self.economies.items()):
            expired = await economy.expire_due_effects()
            if expired:
                logger.info(f"Expired {len(expired)} effects for user {user_id}")

    @expire_effects_loop.before_loop
    async def before_expire_effects_loop(self):
        await self.wait_until_ready()

    # Rendering

    def build_question_embed(self, session: BattleSession) -> discord.Embed:
        question = session.current_question
        embed = discord.Embed(
            title=f"⚔️ Question {session.current_question_index + 1}/{session.total_questions}",
            description=f"**{question.text}**" if question else "",
            color=0x6699ff
        )
        for i, answer in enumerate(question.answers if question else ()):
            embed.add_field(name=ANSWER_LABELS[i % len(ANSWER_LABELS)], value=answer, inline=True)
        opponent = session.opponent.name if session.opponent else "Opponent"
        embed.add_field(
            name="📊 Score",
            value=f"You: {session.score.player} | {opponent}: {session.score.opponent}",
            inline=False
        )
        embed.set_footer(text=f"⏱️ {session.time_left}s left")
        return embed

    def build_results_embed(self, session: BattleSession) -> discord.Embed:
        if session.status == BattleStatus.ERROR:
            return discord.Embed(
                title="❌ Battle Error",
                description=session.last_error or "The battle could not continue.",
                color=0xff0000
            )

        victory = session.is_victory
        embed = discord.Embed(
            title="🏆 Victory!" if victory else "💀 Defeat",
            description=(
                f"Final score: **{session.score.player}** vs **{session.score.opponent}**\n"
                f"Correct answers: {session.correct_answers}/{session.total_questions}"
            ),
            color=0x00ff00 if victory else 0xffaa00
        )
        rewards = session.rewards
        if rewards:
            lines = [f"✨ {rewards.xp} XP", f"🪙 {rewards.coins} coins"]
            if rewards.streak_bonus:
                lines.append(f"🔥 Streak bonus: {rewards.streak_bonus}")
            if rewards.time_bonus:
                lines.append(f"⏱️ Time bonus: {rewards.time_bonus}")
            embed.add_field(name="🎁 Rewards", value="\n".join(lines), inline=False)
            if rewards.items:
                embed.add_field(name="📦 Items", value=", ".join(rewards.items), inline=False)
            if rewards.achievements:
                embed.add_field(name="🏅 Achievements", value=", ".join(rewards.achievements), inline=False)
        return embed

    async def on_session_update(self, user_id: str, session: BattleSession):
        """Keep the battle message in sync with the session."""
        message = self.battle_messages.get(user_id)
        if message is None:
            return

        try:
            if session.is_terminal:
                # Settlement publishes twice; render the final bundle once it has rewards.
                if session.status == BattleStatus.COMPLETED and session.rewards is None:
                    return
                await message.edit(embed=self.build_results_embed(session), view=None)
                self._rendered.pop(user_id, None)
                return

            if session.status != BattleStatus.ACTIVE:
                return

            key = (session.current_question_index, session.time_left)
            previous = self._rendered.get(user_id)
            question_changed = previous is None or previous[0] != key[0]
            if not question_changed and session.time_left % 5 != 0:
                return

            self._rendered[user_id] = key
            view = None
            if question_changed and session.current_question is not None:
                view = AnswerView(self, user_id, session.current_question_index,
                                  session.current_question.answers)
                await message.edit(embed=self.build_question_embed(session), view=view)
            else:
                await message.edit(embed=self.build_question_embed(session))
        except discord.HTTPException as e:
            logger.warning(f"Failed to update battle message for user {user_id}: {e}")

    async def send_notifications(self, interaction: discord.Interaction, economy: EconomyOrchestrator):
        for notification in economy.drain_notifications():
            if notification['type'] == 'level_up':
                text = f"⬆️ Level up! You reached level {notification['level']}."
            elif notification['type'] == 'achievement':
                text = f"🏅 Achievement unlocked: {notification['title']}"
            elif notification['type'] == 'quest_complete':
                text = f"📜 Quest complete: {notification['title']}"
            else:
                continue
            try:
                await interaction.followup.send(text, ephemeral=True)
            except discord.HTTPException as e:
                logger.warning(f"Failed to send notification: {e}")

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            help_embed = discord.Embed(
                title="🎯 Quiz Battle Commands",
                description="Battle bots, earn XP and coins, and spend them in the store",
                color=0x00ff00
            )
            help_embed.add_field(
                name="⚔️ Battles",
                value=(
                    "`/battle` - Start a battle against a bot opponent\n"
                    "`/dismiss` - Abandon your current battle\n"
                    "`/stats` - Show your battle statistics"
                ),
                inline=False
            )
            help_embed.add_field(
                name="🎒 Economy",
                value=(
                    "`/profile` - Level, XP and coins\n"
                    "`/inventory` - Your items\n"
                    "`/store` - Items for sale\n"
                    "`/buy <item_id>` - Buy an item\n"
                    "`/equip <item_id>` - Equip an item\n"
                    "`/use_item <item_id>` - Activate an equipped item's boosts\n"
                    "`/effects` - Active boosts\n"
                    "`/quests` - Quest progress\n"
                    "`/achievements` - Achievements"
                ),
                inline=False
            )
            help_embed.add_field(
                name="📋 Settings",
                value=(
                    "`/set_questions <number>` - Questions per battle\n"
                    "`/set_timer <seconds>` - Time limit per question (5-300 sec)"
                ),
                inline=False
            )
            help_embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            help_embed.set_footer(text="Use slash commands to interact with the bot")

            await interaction.response.send_message(embed=help_embed)

        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to display help", "❌ Help Error")

    async def handle_battle(self, interaction: discord.Interaction):
        """Handle /battle command"""
        try:
            await interaction.response.defer(thinking=True)
            user_id = str(interaction.user.id)
            controller = await self.get_controller(interaction.user)

            if controller.is_busy:
                await self.send_warning_response(
                    interaction,
                    "You already have a battle in progress. Finish it or use `/dismiss`.",
                    "⚠️ Battle In Progress"
                )
                return

            self.battle_messages.pop(user_id, None)
            self._rendered.pop(user_id, None)

            session = await controller.recover_battle()
            if session is None:
                started = await controller.initialize_battle()
                if not started:
                    error = controller.session.last_error if controller.session else None
                    await self.send_error_response(
                        interaction,
                        error or "The battle could not be started. Please try again.",
                        "❌ Battle Start Failed"
                    )
                    return
                session = controller.session

            if session is None or session.status != BattleStatus.ACTIVE:
                await self.send_error_response(interaction, "The battle ended before it started.")
                return

            view = AnswerView(self, user_id, session.current_question_index,
                              session.current_question.answers)
            message = await interaction.followup.send(
                embed=self.build_question_embed(session), view=view, wait=True
            )
            self.battle_messages[user_id] = message
            self._rendered[user_id] = (session.current_question_index, session.time_left)

        except PersistenceError as e:
            logger.error(f"Storage error in battle command: {e}")
            await self.send_error_response(interaction, "Your profile could not be loaded. Please try again.")
        except discord.HTTPException as e:
            logger.error(f"Discord error in battle command: {e}")
            await self.send_error_response(interaction, "Failed to start battle", "❌ Battle Error")

    async def handle_answer(self, interaction: discord.Interaction, answer_index: int, question_index: int):
        """Handle an answer button press"""
        try:
            await interaction.response.defer()
            controller = await self.get_controller(interaction.user)
            applied = await controller.submit_answer(answer_index, question_index=question_index)

            if not applied:
                await self.send_info_response(interaction, "That question has already closed.")
                return

            if controller.session.status == BattleStatus.COMPLETED and controller.economy is not None:
                await self.send_notifications(interaction, controller.economy)
                if controller.economy.errors:
                    await self.send_warning_response(
                        interaction,
                        "Some rewards could not be saved and may not persist.",
                        "⚠️ Sync Problem"
                    )
                    controller.economy.errors.clear()

        except InvalidStateError:
            await self.send_error_response(interaction, "You have no battle in progress. Use `/battle` to start one.")
        except PersistenceError as e:
            logger.error(f"Failed to save answer: {e}")
            await self.send_error_response(
                interaction,
                "Your progress could not be saved and the battle was stopped. Use `/dismiss` and try again.",
                "❌ Save Failed"
            )
        except discord.HTTPException as e:
            logger.error(f"Discord error handling answer: {e}")

    async def handle_dismiss(self, interaction: discord.Interaction):
        """Handle /dismiss command"""
        try:
            user_id = str(interaction.user.id)
            controller = self.controllers.get(user_id)
            if controller is None or controller.session is None:
                await self.send_info_response(interaction, "You have no battle to dismiss.")
                return

            await controller.dismiss()
            message = self.battle_messages.pop(user_id, None)
            self._rendered.pop(user_id, None)
            if message is not None:
                try:
                    await message.edit(view=None)
                except discord.HTTPException:
                    logger.warning(f"Failed to clear battle buttons for user {user_id}")

            await interaction.response.send_message("🏳️ Battle dismissed.", ephemeral=True)

        except discord.HTTPException as e:
            logger.error(f"Error in dismiss command: {e}")
            await self.send_error_response(interaction, "Failed to dismiss battle")

    async def handle_profile(self, interaction: discord.Interaction):
        """Handle /profile command"""
        try:
            economy = await self.get_economy(interaction.user)
            profile = economy.profile
            curve = self.config_manager.get_level_curve()

            embed = discord.Embed(
                title=f"👤 {profile.username or interaction.user.display_name}",
                color=0x6699ff
            )
            embed.add_field(name="Level", value=str(profile.level), inline=True)
            embed.add_field(name="XP", value=str(profile.xp), inline=True)
            embed.add_field(name="Coins", value=str(profile.coins), inline=True)
            embed.add_field(
                name="Next Level",
                value=(
                    f"{progress_to_next_level(profile.xp, curve)}% "
                    f"({xp_to_next_level(profile.xp, curve)} XP to go)"
                ),
                inline=False
            )
            embed.add_field(
                name="Multipliers",
                value=(
                    f"XP x{profile.reward_multipliers.xp:.2f} | "
                    f"Coins x{profile.reward_multipliers.coins:.2f} | "
                    f"Streak x{profile.streak_multiplier:.2f}"
                ),
                inline=False
            )
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except PersistenceError as e:
            logger.error(f"Error loading profile: {e}")
            await self.send_error_response(interaction, "Your profile could not be loaded.")

    async def handle_stats(self, interaction: discord.Interaction):
        """Handle /stats command"""
        try:
            stats = await self.data_manager.load_battle_stats(str(interaction.user.id))
            embed = discord.Embed(title="📈 Battle Statistics", color=0x6699ff)
            embed.add_field(name="Battles", value=str(stats.total_battles), inline=True)
            embed.add_field(name="Wins", value=str(stats.wins), inline=True)
            embed.add_field(name="Losses", value=str(stats.losses), inline=True)
            embed.add_field(name="Win Streak", value=f"{stats.win_streak} (best {stats.highest_streak})", inline=True)
            embed.add_field(name="Average Score", value=f"{stats.average_score}%", inline=True)

            recent = stats.battle_history[:5]
            if recent:
                embed.add_field(
                    name="Recent Battles",
                    value="\n".join(
                        f"{'🏆' if h.result == 'victory' else '💀'} {h.score} pts vs {h.opponent or 'bot'}"
                        for h in recent
                    ),
                    inline=False
                )
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except PersistenceError as e:
            logger.error(f"Error loading battle stats: {e}")
            await self.send_error_response(interaction, "Your statistics could not be loaded.")

    async def handle_inventory(self, interaction: discord.Interaction):
        """Handle /inventory command"""
        try:
            economy = await self.get_economy(interaction.user)
            inventory = economy.profile.inventory
            if not inventory:
                await self.send_info_response(interaction, "Your inventory is empty.", "🎒 Inventory")
                return

            lines = [
                f"`{entry.item.id}` {entry.item.name} x{entry.quantity}"
                + (" (equipped)" if entry.is_equipped else "")
                for entry in inventory
            ]
            embed = discord.Embed(title="🎒 Inventory", description="\n".join(lines[:25]), color=0x6699ff)
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except PersistenceError as e:
            logger.error(f"Error loading inventory: {e}")
            await self.send_error_response(interaction, "Your inventory could not be loaded.")

    async def handle_store(self, interaction: discord.Interaction):
        """Handle /store command"""
        try:
            items = await self.data_manager.load_store_items()
            if not items:
                await self.send_info_response(interaction, "The store is empty right now.", "🏪 Store")
                return

            embed = discord.Embed(title="🏪 Store", color=0x6699ff)
            for item in items[:25]:
                effects = ", ".join(f"{e.type.value} x{e.value} ({e.duration}s)" for e in item.effects)
                embed.add_field(
                    name=f"{item.name} - {item.price} coins",
                    value=f"`{item.id}` {item.description}" + (f"\n{effects}" if effects else ""),
                    inline=False
                )
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except PersistenceError as e:
            logger.error(f"Error loading store: {e}")
            await self.send_error_response(interaction, "The store could not be loaded.")

    async def handle_buy(self, interaction: discord.Interaction, item_id: str):
        """Handle /buy command"""
        try:
            economy = await self.get_economy(interaction.user)
            entry = await economy.purchase_item(item_id)
            await interaction.response.send_message(
                f"✅ Bought **{entry.item.name}**. Balance: {economy.profile.coins} coins",
                ephemeral=True
            )
        except InsufficientFundsError as e:
            await self.send_error_response(
                interaction,
                f"You need {e.requested} coins but have {e.balance}.",
                "❌ Not Enough Coins"
            )
        except ItemNotFoundError as e:
            await self.send_error_response(interaction, str(e), "❌ Unknown Item")
        except PersistenceError as e:
            logger.error(f"Error during purchase: {e}")
            await self.send_error_response(interaction, "The purchase could not be completed.")

    async def handle_equip(self, interaction: discord.Interaction, item_id: str):
        """Handle /equip command"""
        try:
            economy = await self.get_economy(interaction.user)
            entry = await economy.equip_item(item_id)
            await interaction.response.send_message(f"✅ Equipped **{entry.item.name}**.", ephemeral=True)
        except ItemNotFoundError as e:
            await self.send_error_response(interaction, str(e), "❌ Unknown Item")
        except PersistenceError as e:
            logger.error(f"Error equipping item: {e}")
            await self.send_error_response(interaction, "The item could not be equipped.")

    async def handle_use_item(self, interaction: discord.Interaction, item_id: str):
        """Handle /use_item command"""
        try:
            economy = await self.get_economy(interaction.user)
            effects = await economy.use_item_effect(item_id)
            description = "\n".join(
                f"{e.type.value} x{e.value} for {e.duration // 60}m {e.duration % 60}s" for e in effects
            )
            await interaction.response.send_message(
                embed=discord.Embed(title="✨ Effects Activated", description=description, color=0x00ff00),
                ephemeral=True
            )
        except (ItemNotFoundError, ItemNotEquippedError, InvalidStateError) as e:
            await self.send_error_response(interaction, str(e), "❌ Cannot Use Item")
        except PersistenceError as e:
            logger.error(f"Error using item: {e}")
            await self.send_error_response(interaction, "The item could not be used.")

    async def handle_effects(self, interaction: discord.Interaction):
        """Handle /effects command"""
        try:
            economy = await self.get_economy(interaction.user)
            await economy.expire_due_effects()
            effects = economy.ledger.active_effects
            if not effects:
                await self.send_info_response(interaction, "No active boosts.", "✨ Effects")
                return

            now = economy.clock()
            lines = [
                f"{e.type.value} x{e.value} from {e.source_item.get('name', 'item')}, "
                f"{max(0, int(e.expires_at - now))}s left"
                for e in sorted(effects, key=lambda e: e.expires_at)
            ]
            embed = discord.Embed(title="✨ Active Effects", description="\n".join(lines), color=0x6699ff)
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except PersistenceError as e:
            logger.error(f"Error loading effects: {e}")
            await self.send_error_response(interaction, "Your effects could not be loaded.")

    async def handle_quests(self, interaction: discord.Interaction):
        """Handle /quests command"""
        try:
            economy = await self.get_economy(interaction.user)
            if not economy.quests:
                await self.send_info_response(interaction, "No quests available.", "📜 Quests")
                return

            embed = discord.Embed(title="📜 Quests", color=0x6699ff)
            for quest in economy.quests[:25]:
                requirements = ", ".join(f"{r.type} {r.current}/{r.target}" for r in quest.requirements)
                embed.add_field(
                    name=f"{quest.title} ({quest.status.value})",
                    value=f"{quest.progress}% - {requirements}" if requirements else f"{quest.progress}%",
                    inline=False
                )
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except PersistenceError as e:
            logger.error(f"Error loading quests: {e}")
            await self.send_error_response(interaction, "Your quests could not be loaded.")

    async def handle_achievements(self, interaction: discord.Interaction):
        """Handle /achievements command"""
        try:
            economy = await self.get_economy(interaction.user)
            if not economy.achievements:
                await self.send_info_response(interaction, "No achievements yet.", "🏅 Achievements")
                return

            lines = [
                f"{'🏅' if a.unlocked else '🔒'} **{a.title}** ({a.rarity})"
                for a in economy.achievements
            ]
            embed = discord.Embed(title="🏅 Achievements", description="\n".join(lines[:40]), color=0x6699ff)
            await interaction.response.send_message(embed=embed, ephemeral=True)

        except PersistenceError as e:
            logger.error(f"Error loading achievements: {e}")
            await self.send_error_response(interaction, "Your achievements could not be loaded.")

    async def handle_set_questions(self, interaction: discord.Interaction, number: int):
        """Handle /set_questions command"""
        result = self.config_manager.set_questions_per_battle(number)
        if result['success']:
            await interaction.response.send_message(result['user_message'])
        else:
            await self.send_error_response(interaction, result['user_message'], "❌ Invalid Question Count")

    async def handle_set_timer(self, interaction: discord.Interaction, seconds: int):
        """Handle /set_timer command"""
        result = self.config_manager.set_time_per_question(seconds)
        if result['success']:
            await interaction.response.send_message(result['user_message'])
        else:
            await self.send_error_response(interaction, result['user_message'], "❌ Invalid Timer Duration")

    # Events

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        print(f"🤖 {self.user} is Ready and Online!")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
            print(f"⚡ Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        self.expire_effects_loop.cancel()
        for controller in self.controllers.values():
            controller.unmount()
        # Let battles that just ended finish writing their results
        for controller in self.controllers.values():
            await controller.wait_for_settlement()
        await super().close()

    # Responses

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        await self._send_embed(interaction, title, message, 0xff0000,
                               footer="If this error persists, try using /help for available commands")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_embed(interaction, title, message, 0x6699ff)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_embed(interaction, title, message, 0xffaa00)

    async def _send_embed(self, interaction: discord.Interaction, title: str, message: str,
                          color: int, footer: Optional[str] = None):
        try:
            embed = discord.Embed(title=title, description=message, color=color)
            if footer:
                embed.set_footer(text=footer)

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send '{title}' response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBattleBot(config)

    try:
        logger.info("Starting Quiz Battle Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
