"""
govledger CLI — Public tax and expenditure ledger.

Commands:
    govledger init               Initialize a ledger with a government wallet
    govledger pay-tax            Pay tax into the treasury
    govledger spend              Record a government expenditure
    govledger set-auditor        Grant or revoke auditor status
    govledger change-government  Hand the government role to a new wallet
    govledger balance            Show treasury balance and totals
    govledger taxes              Show a citizen's tax history
    govledger expenditures       List expenditures
    govledger events             View the event log
    govledger demo               Run a full demo flow
"""

from __future__ import annotations

import logging
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import Optional

import click
from click.core import ParameterSource
from eth_account import Account
from eth_utils import add_0x_prefix, is_hexstr, remove_0x_prefix

from .config import LedgerConfig
from .errors import LedgerError
from .events import EventLog, EventType, MemoryEventSink
from .ledger import PublicLedger
from .money import eth_to_wei, format_wei
from .principal import display_address
from .settlement import LocalSettlement
from .treasury import ReservationStatus


def _config() -> LedgerConfig:
    return LedgerConfig.from_env()


def _ledger() -> PublicLedger:
    return PublicLedger.from_config(_config())


def _settlement(config: LedgerConfig) -> LocalSettlement:
    return LocalSettlement(config.custody_path, config.treasury_address)


def _refuse_key_from_argv(param: str, unsafe_allow_key_arg: bool) -> None:
    ctx = click.get_current_context(silent=True)
    key_from_argv = (
        ctx is not None
        and ctx.get_parameter_source(param) == ParameterSource.COMMANDLINE
    )
    if key_from_argv and not unsafe_allow_key_arg:
        flag = "--" + param.replace("_", "-")
        click.echo(
            f"❌ Refusing {flag} from argv. Re-run with prompt input or pass "
            "--unsafe-allow-key-arg to acknowledge the risk.",
            err=True,
        )
        sys.exit(1)


def _read_secret_reference(reference: str) -> str:
    """Fetch a secret through the 1Password CLI."""
    completed = subprocess.run(["op", "read", reference], capture_output=True, text=True, timeout=10)
    if completed.returncode != 0:
        raise RuntimeError(f"op read {reference} failed: {completed.stderr.strip()}")
    return completed.stdout.strip()


def _resolve_private_key(key_input: str) -> str:
    """Wallet key as 0x-prefixed hex, from a literal or an op:// reference."""
    key = key_input.strip()
    if key.startswith("op://"):
        key = _read_secret_reference(key)
    digits = remove_0x_prefix(key)
    if len(digits) != 64 or not is_hexstr(digits):
        raise ValueError("Expected a 32-byte hex wallet key or an op:// reference")
    return add_0x_prefix(digits)


def _principal_from_key(key_input: str) -> str:
    try:
        return Account.from_key(_resolve_private_key(key_input)).address
    except Exception as exc:
        click.echo(f"❌ Failed to load key: {exc}", err=True)
        sys.exit(1)


def _parse_amount(amount: str) -> int:
    try:
        return eth_to_wei(amount)
    except LedgerError as exc:
        click.echo(f"❌ {exc}", err=True)
        sys.exit(1)


def _fail(exc: Exception) -> None:
    click.echo(f"❌ {type(exc).__name__}: {exc}", err=True)
    sys.exit(1)


def _key_options(name: str, help_text: str):
    def decorator(fn):
        fn = click.option(
            "--unsafe-allow-key-arg",
            is_flag=True,
            default=False,
            help=f"Allow passing --{name} via argv (unsafe; can leak in shell/process history).",
        )(fn)
        fn = click.option(f"--{name}", prompt=True, hide_input=True, help=help_text)(fn)
        return fn
    return decorator


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Log ledger activity to stderr")
def main(verbose: bool):
    """govledger — Public ledger of tax collection and government expenditure."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


@main.command()
@_key_options("government-key", "Government wallet private key hex or op:// reference")
def init(government_key: str, unsafe_allow_key_arg: bool):
    """Initialize the ledger; the key's address becomes the government."""
    _refuse_key_from_argv("government_key", unsafe_allow_key_arg)
    government = _principal_from_key(government_key)
    try:
        _ledger().initialize(government)
    except LedgerError as exc:
        _fail(exc)
    click.echo("✅ Ledger initialized")
    click.echo(f"   Government: {display_address(government)}")
    click.echo(f"   Home:       {_config().home}")


@main.command()
@click.argument("address")
@click.option("--amount", required=True, help="Amount in ETH")
def fund(address: str, amount: str):
    """Credit a wallet in the local custody ledger (development only)."""
    try:
        balance = _settlement(_config()).mint(address, _parse_amount(amount))
    except (LedgerError, ValueError) as exc:
        _fail(exc)
    click.echo(f"✅ {display_address(address)} now holds {format_wei(balance)}")


@main.command("pay-tax")
@_key_options("payer-key", "Taxpayer wallet private key hex or op:// reference")
@click.option("--amount", prompt=True, help="Amount in ETH")
def pay_tax(payer_key: str, unsafe_allow_key_arg: bool, amount: str):
    """Pay tax into the treasury."""
    _refuse_key_from_argv("payer_key", unsafe_allow_key_arg)
    payer = _principal_from_key(payer_key)
    ledger = _ledger()
    try:
        payment = ledger.pay_tax(payer, _parse_amount(amount))
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"✅ Tax paid: {format_wei(payment.amount)}")
    click.echo(f"   Payer:          {display_address(payer)}")
    click.echo(f"   Lifetime total: {format_wei(ledger.get_total_tax_paid(payer))}")


@main.command()
@_key_options("government-key", "Government wallet private key hex or op:// reference")
@click.option("--recipient", prompt=True, help="Recipient wallet address")
@click.option("--amount", prompt=True, help="Amount in ETH")
@click.option("--purpose", prompt=True, help="Short purpose label")
@click.option("--details", default="", help="Free-text details")
def spend(
    government_key: str,
    unsafe_allow_key_arg: bool,
    recipient: str,
    amount: str,
    purpose: str,
    details: str,
):
    """Disburse treasury funds and record the expenditure."""
    _refuse_key_from_argv("government_key", unsafe_allow_key_arg)
    caller = _principal_from_key(government_key)
    ledger = _ledger()
    try:
        expenditure_id = ledger.record_expenditure(caller, recipient, _parse_amount(amount), purpose, details)
    except LedgerError as exc:
        _fail(exc)
    expenditure, _ = ledger.get_expenditure_details(expenditure_id)
    click.echo(f"✅ Expenditure #{expenditure_id} recorded")
    click.echo(f"   Amount:    {format_wei(expenditure.amount)}")
    click.echo(f"   Recipient: {display_address(recipient)}")
    click.echo(f"   Purpose:   {expenditure.purpose}")
    click.echo(f"   Treasury:  {format_wei(ledger.get_balance())}")


@main.command("set-auditor")
@_key_options("government-key", "Government wallet private key hex or op:// reference")
@click.option("--auditor", required=True, help="Auditor wallet address")
@click.option("--enable/--disable", default=True, help="Grant or revoke auditor status")
def set_auditor(government_key: str, unsafe_allow_key_arg: bool, auditor: str, enable: bool):
    """Grant or revoke auditor status."""
    _refuse_key_from_argv("government_key", unsafe_allow_key_arg)
    caller = _principal_from_key(government_key)
    try:
        _ledger().set_auditor(caller, auditor, enable)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"✓ Auditor updated: {display_address(auditor)} enabled={enable}")


@main.command("change-government")
@_key_options("government-key", "Current government wallet private key hex or op:// reference")
@click.option("--new-government", required=True, help="New government wallet address")
def change_government(government_key: str, unsafe_allow_key_arg: bool, new_government: str):
    """Hand the government role to a new wallet (irreversible for the old one)."""
    _refuse_key_from_argv("government_key", unsafe_allow_key_arg)
    caller = _principal_from_key(government_key)
    try:
        _ledger().change_government_wallet(caller, new_government)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"✓ Government wallet changed to {display_address(new_government)}")


@main.command()
def balance():
    """Show treasury balance and ledger totals."""
    try:
        report = _ledger().reconcile()
    except LedgerError as exc:
        _fail(exc)
    click.echo("🏛  Treasury")
    click.echo(f"   Custodied:  {format_wei(report.custodied_balance)}")
    click.echo(f"   Collected:  {format_wei(report.totals.total_collected)}")
    click.echo(f"   Spent:      {format_wei(report.totals.total_spent)}")
    if report.reserved:
        click.echo(f"   Reserved:   {format_wei(report.reserved)}")
    click.echo(f"   In sync:    {'yes' if report.in_sync else 'NO'}")


@main.command()
@click.argument("address")
def taxes(address: str):
    """Show a citizen's tax payment history."""
    try:
        record = _ledger().get_citizen_record(address)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"🧾 Taxes paid by {display_address(record.principal)}")
    if not record.payments:
        click.echo("   No payments recorded.")
        return
    for index, payment in enumerate(record.payments):
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(payment.timestamp))
        click.echo(f"   #{index}  {ts}  {format_wei(payment.amount)}  {payment.status.value}")
    click.echo(f"   Total: {format_wei(record.total_paid)}")


@main.command()
@click.argument("address")
@click.argument("index", type=int)
def payment(address: str, index: int):
    """Show one tax payment by index."""
    try:
        tax_payment = _ledger().get_tax_payment(address, index)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"Amount:    {format_wei(tax_payment.amount)}")
    click.echo(f"Timestamp: {tax_payment.timestamp}")
    click.echo(f"Status:    {tax_payment.status.value}")


@main.command()
@click.argument("expenditure_id", type=int)
def expenditure(expenditure_id: int):
    """Show one expenditure and its details."""
    try:
        record, details = _ledger().get_expenditure_details(expenditure_id)
    except LedgerError as exc:
        _fail(exc)
    click.echo(f"Expenditure #{expenditure_id}")
    click.echo(f"  Amount:    {format_wei(record.amount)}")
    click.echo(f"  Timestamp: {record.timestamp}")
    click.echo(f"  Purpose:   {record.purpose}")
    click.echo(f"  Status:    {record.status.value}")
    click.echo(f"  Details:   {details}")


@main.command()
@click.option("--cursor", type=int, default=0, help="First expenditure id")
@click.option("--size", type=int, default=20, help="Page size")
def expenditures(cursor: int, size: int):
    """List expenditures."""
    ledger = _ledger()
    try:
        items, next_cursor = ledger.list_expenditures(cursor=cursor, size=size)
    except (LedgerError, ValueError) as exc:
        _fail(exc)
    click.echo(f"📒 {ledger.get_total_expenditures()} expenditures")
    for expenditure_id, record in items:
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.timestamp))
        click.echo(f"   #{expenditure_id}  {ts}  {format_wei(record.amount)}  {record.purpose}")
    if next_cursor < ledger.get_total_expenditures():
        click.echo(f"   More: --cursor {next_cursor}")


@main.command()
@click.option("--all", "show_all", is_flag=True, help="Include settled and failed reservations")
def reservations(show_all: bool):
    """List disbursement reservations (open ones by default)."""
    status = None if show_all else ReservationStatus.RESERVED
    rows = _ledger().reservations(status)
    if not rows:
        click.echo("No reservations found.")
        return
    for r in rows:
        click.echo(
            f"   {r.reservation_id}  {r.status.value}  {format_wei(r.amount)} → "
            f"{display_address(r.recipient)}  ({r.purpose})"
        )


@main.command()
@click.argument("reservation_id")
@_key_options("government-key", "Government wallet private key hex or op:// reference")
@click.option(
    "--outcome",
    type=click.Choice(["auto", "settled", "not-settled"]),
    default="auto",
    help="Expected settlement outcome; refused when the settlement layer disagrees",
)
def resolve(reservation_id: str, government_key: str, unsafe_allow_key_arg: bool, outcome: str):
    """Close a reservation left open by an interrupted disbursement."""
    _refuse_key_from_argv("government_key", unsafe_allow_key_arg)
    caller = _principal_from_key(government_key)
    settled = None if outcome == "auto" else outcome == "settled"
    try:
        expenditure_id = _ledger().resolve_reservation(caller, reservation_id, settled)
    except LedgerError as exc:
        _fail(exc)
    if expenditure_id is None:
        click.echo(f"✓ Reservation {reservation_id} released")
    else:
        click.echo(f"✓ Reservation {reservation_id} committed as expenditure #{expenditure_id}")


@main.command()
@click.option(
    "--type",
    "event_type",
    type=click.Choice([e.value for e in EventType]),
    default=None,
    help="Filter by event type",
)
@click.option("--limit", type=int, default=20, help="Number of events")
def events(event_type: Optional[str], limit: int):
    """View the event log."""
    log = EventLog(_config().events_path)
    try:
        entries = log.read_events(
            event_type=EventType(event_type) if event_type else None,
            limit=limit,
        )
    except LedgerError as exc:
        _fail(exc)

    if not entries:
        click.echo("No events found.")
        return

    for event in entries:
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(event.timestamp))
        fields = " ".join(f"{k}={v}" for k, v in sorted(event.data.items()))
        click.echo(f"  {ts} {event.event_type} {fields}")


@main.command()
def demo():
    """Run a full demo of the ledger in a throwaway directory."""
    click.echo("🎬 govledger Demo — Collect, Spend, Audit")
    click.echo("=" * 50)

    with tempfile.TemporaryDirectory() as tmp:
        config = LedgerConfig(home=Path(tmp))
        sink = MemoryEventSink()
        settlement = _settlement(config)
        ledger = PublicLedger.from_config(config)
        ledger.events = sink

        click.echo("\n1️⃣  Generating wallets...")
        government = Account.create()
        citizens = [Account.create() for _ in range(2)]
        contractor = Account.create()
        click.echo(f"   Government: {government.address}")
        click.echo(f"   Citizens:   {citizens[0].address}, {citizens[1].address}")
        click.echo(f"   Contractor: {contractor.address}")

        click.echo("\n2️⃣  Initializing ledger...")
        ledger.initialize(government.address)
        for citizen in citizens:
            settlement.mint(citizen.address, eth_to_wei("10"))

        click.echo("\n3️⃣  Citizens pay tax...")
        for citizen, amount in zip(citizens, ("1.5", "2.5")):
            ledger.pay_tax(citizen.address, eth_to_wei(amount))
            click.echo(f"   ✅ {amount} ETH from {citizen.address}")

        click.echo("\n4️⃣  Government spends...")
        attempts = [
            (government.address, "1", "roads", "Paving contract"),
            (government.address, "100", "stadium", "Too expensive"),
            (citizens[0].address, "1", "self-dealing", "Not the government"),
        ]
        for caller, amount, purpose, details in attempts:
            try:
                expenditure_id = ledger.record_expenditure(
                    caller, contractor.address, eth_to_wei(amount), purpose, details
                )
                click.echo(f"   ✅ #{expenditure_id} {amount} ETH → {purpose}")
            except LedgerError as exc:
                click.echo(f"   ❌ {amount} ETH → {purpose}: {type(exc).__name__}")

        click.echo("\n5️⃣  Treasury...")
        report = ledger.reconcile()
        click.echo(f"   Collected: {format_wei(report.totals.total_collected)}")
        click.echo(f"   Spent:     {format_wei(report.totals.total_spent)}")
        click.echo(f"   Custodied: {format_wei(report.custodied_balance)}")
        click.echo(f"   In sync:   {'yes' if report.in_sync else 'NO'}")

        click.echo("\n6️⃣  Events...")
        for event in sink.events:
            click.echo(f"   {event.event_type} {event.data}")

    click.echo("\n" + "=" * 50)
    click.echo("🎉 Demo complete! Pay → Hold → Spend → Audit")


if __name__ == "__main__":
    main()
