#!/usr/bin/env python3
"""
Quiz Battle Bot launcher.

Reads config.json (or the file named by QUIZBATTLE_CONFIG), reports any
settings it had to ignore, checks that the question data directory has enough
playable questions for one battle, then starts the Discord bot.

Usage:
    python main.py

Environment Variables:
    DISCORD_BOT_TOKEN: Bot token, takes precedence over bot.token in the config
    QUIZBATTLE_CONFIG: Alternate config file path
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

PLACEHOLDER_TOKEN = "YOUR_DISCORD_BOT_TOKEN_HERE"


def fail(*lines):
    for line in lines:
        print(line)
    sys.exit(1)


def load_config():
    """Read the JSON config; exits with a message if it is missing or invalid."""
    config_path = Path(os.getenv('QUIZBATTLE_CONFIG', 'config.json'))

    if not config_path.exists():
        fail(f"❌ Error: {config_path} not found!",
             "Copy config.example.json to config.json and fill in bot.token.")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        fail(f"❌ Error: {config_path} is not valid JSON (line {e.lineno}): {e.msg}")
    except OSError as e:
        fail(f"❌ Error reading {config_path}: {e}")

    if not isinstance(config, dict):
        fail(f"❌ Error: {config_path} must contain a JSON object")
    return config


def resolve_token(config):
    token = os.getenv('DISCORD_BOT_TOKEN') or config.get('bot', {}).get('token')
    if not token or token == PLACEHOLDER_TOKEN:
        fail("❌ Error: Discord bot token not configured!",
             "Set DISCORD_BOT_TOKEN or the bot.token field in config.json.")
    return token


def configure_logging(config):
    """Root logging to stderr and <log_directory>/bot.log."""
    log_config = config.get('logging', {})
    level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    # Runs before quizbattle.bot is imported so its own basicConfig call is a no-op.
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8')
        ]
    )


def preflight(config):
    """Report rejected config values and refuse to start if a battle cannot be filled."""
    from quizbattle.config_manager import ConfigManager
    from quizbattle.data_manager import DataManager

    config_manager = ConfigManager()
    for error in config_manager.load_from_config(config):
        print(f"⚠️  Ignoring config value: {error}")

    data_manager = DataManager(config_manager.get_data_directory())
    data_manager.load_question_files()
    summary = data_manager.get_loading_summary()
    for error in summary['errors']:
        print(f"⚠️  {error}")

    required = config_manager.get_questions_per_battle()
    if summary['total_questions'] < required:
        fail(f"❌ Error: {summary['data_directory']} has {summary['total_questions']} usable "
             f"questions; each battle needs {required}.")

    print(f"📚 {summary['total_questions']} questions in {summary['total_files']} files")


async def start(config):
    from quizbattle.bot import run_bot
    await run_bot(resolve_token(config), config)


if __name__ == "__main__":
    config = load_config()
    configure_logging(config)
    preflight(config)
    try:
        print("⚔️  Starting Quiz Battle Bot...")
        asyncio.run(start(config))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
