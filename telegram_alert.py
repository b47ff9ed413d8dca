# Filename: telegram_alert.py

import requests
import logging

from models import MemeToken, OrderResponse, OrderType

logger = logging.getLogger("TelegramNotifier")


class TelegramNotifier:
    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10.0):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

        if not self.bot_token or not self.chat_id:
            logger.error("[Telegram] Missing bot token or chat ID!")

    @classmethod
    def from_config(cls, config) -> "TelegramNotifier":
        return cls(config.get("TELEGRAM_BOT_TOKEN", ""), config.get("TELEGRAM_CHAT_ID", ""))

    def send_order_alert(self, token: MemeToken, order_type: OrderType, response: OrderResponse,
                         reason: str = "") -> bool:
        """
        Sends the outcome of an order. Called from a worker thread by the
        order handler, so it must not touch the event loop.
        """
        icon = "🛒" if order_type is OrderType.BUY else "💰"
        status = "✅ executed" if response.success else f"❌ failed: {response.error}"
        msg = f"""
{icon} *{order_type.value.upper()}* {status}
*Name:* {token.name}
*Symbol:* `{token.symbol}`
*Market Cap:* {token.market_cap:.2f} SOL
*Price:* {token.price:.10f} SOL
*Reason:* {reason}

🔍 [View on Solscan](https://solscan.io/token/{token.mint})
        """.strip()
        return self.send_markdown(msg)

    def send_markdown(self, text: str) -> bool:
        """
        Sends a raw Markdown message.
        """
        if not self.bot_token or not self.chat_id:
            return False

        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": False
        }

        try:
            response = requests.post(url, data=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"[Telegram] Request exception: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"[Telegram] Failed: {response.status_code} - {response.text}")
            return False
        logger.info("[Telegram] ✅ Message sent successfully.")
        return True
