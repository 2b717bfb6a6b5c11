"""Chat message builders (HTML parse mode)."""

from decimal import Decimal
from html import escape
from typing import Optional

from walletbot.clients.models import RiskAssessment, WalletAssetBalance, Withdrawal
from walletbot.sessions import Session

ASSET_EMOJI = {
    "BTC": "₿",
    "ETH": "⟠",
    "USDT": "💵",
    "BNB": "🔶",
    "XRP": "💧",
    "ADA": "🔷",
    "SOL": "☀️",
    "DOGE": "🐶",
    "DOT": "⚫",
    "AVAX": "❄️",
}

MAIN_MENU_PROMPT = "What would you like to do with your wallet?"
FALLBACK = "I'm not sure what to do with that. Let's go back to the main menu."
NEED_WALLET = "You need to connect a wallet first. Use the 'Connect Wallet' option to get started."
GENERIC_RETRY = "Sorry, something went wrong. Please try the operation again."
STILL_PROCESSING = "Still working on your previous request. Please wait a moment."
AUTH_PENDING = "⏳ Your authentication request is still waiting for approval on the dashboard."
SEND_FAILED = "There was an error processing your transaction. Please try again later."
SWAP_FAILED = "There was an error processing your swap. Please try again later."
QUOTE_FAILED = (
    "Error getting swap quote. This may be due to insufficient liquidity or an "
    "unsupported token pair. Please try again with different parameters."
)
RISK_CAUTION = "⚠️ Could not perform risk check on this address. Proceed with caution."


def asset_emoji(symbol: str) -> str:
    return ASSET_EMOJI.get(symbol.upper(), "🪙")


def usd(value: Decimal) -> str:
    return f"${value:,.2f}"


def format_overview(balances: list[WalletAssetBalance], total: Decimal) -> str:
    """Asset list sorted by USD value with amount, value and portfolio share."""
    lines = ["💎 <b>YOUR CRYPTO ASSETS</b> 💎", ""]
    ordered = sorted(balances, key=lambda b: b.value_usd, reverse=True)

    for index, item in enumerate(ordered, start=1):
        symbol = escape(item.asset.symbol)
        name = escape(item.asset.name or item.asset.symbol)
        network = f" ({escape(item.network_name)})" if item.network_name else ""
        share = (item.value_usd / total * 100) if total > 0 else Decimal("0")
        lines.append(f"{index}. {asset_emoji(item.asset.symbol)} <b>{name}</b> ({symbol}){network}")
        lines.append(f"   • Amount: <code>{escape(item.balance)}</code> {symbol}")
        lines.append(f"   • Value: <code>{usd(item.value_usd)}</code> USD")
        lines.append(f"   • Portfolio: <code>{share:.2f}%</code>")
        lines.append("")

    if not ordered:
        lines.append("No assets in this wallet yet.")
        lines.append("")

    lines.append("💡 <i>Tap on</i> 🏠 <i>Main Menu to return</i>")
    return "\n".join(lines)


def format_wallet_header(total: Decimal, wallet_name: Optional[str] = None) -> str:
    lines = ["🏦 <b>WALLET DETAILS</b>", ""]
    if wallet_name:
        lines.append(f"<b>Name:</b> {escape(wallet_name)}")
    lines.append(f"<b>Value:</b> {usd(total)} USD")
    return "\n".join(lines)


def format_risk_caption(risk: RiskAssessment) -> str:
    return (
        "📊 Risk Analysis Results:\n\n"
        f"Risk Score: {escape(risk.risk_score)}\n"
        f"Assessment: {escape(risk.risk_category)}"
    )


def format_send_confirmation(session: Session) -> str:
    symbol = escape(session.asset.symbol)
    lines = [
        "📤 <b>TRANSACTION DETAILS</b>",
        "",
        f"<b>Asset:</b> {symbol}",
        f"<b>Amount:</b> {escape(session.amount)} {symbol}",
        f"<b>To:</b> <code>{escape(session.recipient_address)}</code>",
    ]
    if session.risk is not None:
        lines.append(f"<b>Risk Assessment:</b> {escape(session.risk.risk_category)}")
    lines.extend(["", "Please confirm this transaction."])
    return "\n".join(lines)


def format_send_receipt(session: Session, withdrawal: Withdrawal) -> str:
    symbol = escape(session.asset.symbol)
    return (
        "✅ <b>TRANSACTION SUBMITTED</b>\n\n"
        f"Transaction ID: <code>{escape(withdrawal.id)}</code>\n"
        f"Status: {escape(withdrawal.status)}\n"
        f"Amount: {escape(session.amount)} {symbol}\n"
        f"To: <code>{escape(session.recipient_address)}</code>\n\n"
        "Your transaction is awaiting approval from other wallet signers."
    )


def format_swap_confirmation(session: Session) -> str:
    source = escape(session.asset.symbol)
    target = escape(session.target.symbol)
    return (
        "🔄 <b>SWAP DETAILS</b>\n\n"
        f"<b>From:</b> {escape(session.amount)} {source}\n"
        f"<b>To:</b> ~{escape(session.expected_output)} {target}\n"
        f"<b>Rate:</b> 1 {source} ≈ {session.rate:.6f} {target}\n\n"
        "Please confirm this swap."
    )


def format_swap_receipt(session: Session, tx_id: str, explorer_url: str) -> str:
    link = f"{explorer_url}{tx_id}"
    return (
        "✅ <b>SWAP TRANSACTION SUBMITTED</b>\n\n"
        f"Transaction ID: <code>{escape(tx_id)}</code>\n"
        f"Swapped {escape(session.amount)} {escape(session.asset.symbol)} to approximately "
        f"{escape(session.expected_output)} {escape(session.target.symbol)}\n\n"
        f'<a href="{escape(link)}">View on Solscan</a>\n\n'
        "Your transaction is being processed on the blockchain."
    )


def format_verification(code: str, dashboard_url: str) -> str:
    return (
        "Or enter this verification code on the wallet dashboard:\n\n"
        f"<b>{escape(code)}</b>\n\n"
        f"Visit {escape(dashboard_url)} to complete the process."
    )
