"""CLI entry point for quizelo."""

import asyncio
import json
import logging
from decimal import Decimal

import click
from eth_account import Account

from .config import NETWORKS, Settings, load_config, network_for_env
from .errors import GenerationError, LedgerReadError
from .executor import TransactionExecutor
from .generator import TOPICS, QuestionGenerator, find_topic
from .ledger import QuizeloLedger
from .questions import answer_distribution, mark_answer, score_answers
from .referral import AttributionReporter
from .rewards import calculate_reward, can_claim, reward_multiplier
from .session import QuizSessionOrchestrator, StatusChannel
from .state import LedgerStateCache, RefreshLoop, View
from .wallet import Web3Wallet, connect

LETTERS = "ABCD"


def to_base_units(amount: Decimal, decimals: int) -> int:
    return int(amount * (Decimal(10) ** decimals))


def format_units(value: int, decimals: int) -> str:
    return f"{Decimal(value) / (Decimal(10) ** decimals):f}"


def read_private_key(raw_key: str | None) -> str | None:
    if raw_key and not raw_key.startswith("0x"):
        # Could be a hex key without prefix or a file path
        if len(raw_key) == 64 and all(c in "0123456789abcdefABCDEF" for c in raw_key):
            return "0x" + raw_key
        with open(raw_key) as f:
            return f.read().strip()
    return raw_key


async def make_orchestrator(settings: Settings, assume_yes: bool = False) -> QuizSessionOrchestrator:
    if not settings.contract_address:
        raise click.ClickException(
            "Contract address required (--contract, QUIZELO_CONTRACT_ADDRESS or config contract_address)"
        )
    rpc_url = settings.resolved_rpc_url
    w3 = connect(rpc_url)
    if not await w3.is_connected():
        raise click.ClickException(f"Cannot connect to RPC: {rpc_url}")

    account = Account.from_key(settings.private_key) if settings.private_key else None
    if account is None and not settings.account:
        raise click.ClickException("Private key required (--key or config private_key)")

    confirm = None
    if not assume_yes:
        def confirm(tx):
            return click.confirm(
                f"Sign transaction to {tx['to']} (gas {tx['gas']}, nonce {tx['nonce']})?",
                default=True,
            )

    wallet = Web3Wallet(
        w3, account=account, address=settings.account,
        rpc_urls=settings.rpc_urls(), confirm=confirm,
        priority_gwei=settings.priority_gwei,
        receipt_timeout=settings.receipt_timeout,
    )
    reporter = AttributionReporter(settings.attribution_endpoint) if settings.attribution_endpoint else None
    executor = TransactionExecutor(
        wallet, settings.chain_id,
        consumer=settings.attribution_consumer,
        reporter=reporter,
        constrained_host=settings.constrained_host,
    )
    ledger = QuizeloLedger(w3, settings.contract_address, wallet=wallet)
    state = LedgerStateCache(ledger, user=wallet.address, token=settings.fee_token,
                             max_age=settings.refresh_interval)
    orchestrator = QuizSessionOrchestrator(
        executor, ledger, state=state, status=StatusChannel(ttl=settings.message_ttl),
    )
    await orchestrator.load_constants()
    return orchestrator


def make_generator(settings: Settings) -> QuestionGenerator:
    if not settings.ai_api_key:
        raise click.ClickException("AI API key required (QUIZELO_AI_API_KEY or config ai_api_key)")
    return QuestionGenerator(settings.ai_api_key, endpoint=settings.ai_endpoint, model=settings.ai_model)


def get_topic(topic_id: str):
    topic = find_topic(topic_id)
    if topic is None:
        raise click.ClickException(
            f"Unknown topic {topic_id!r}; choose from: {', '.join(t.id for t in TOPICS)}"
        )
    return topic


@click.group()
@click.option("--rpc", envvar="RPC_URL", default=None, help="Celo RPC URL (default: network's public node)")
@click.option("--key", envvar="PRIVATE_KEY", default=None, help="Private key (hex) or path to keyfile")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True), help="Path to config.yaml")
@click.option("--contract", envvar="QUIZELO_CONTRACT_ADDRESS", default=None, help="Quizelo contract address")
@click.option("--network", type=click.Choice(sorted(NETWORKS)), default=None,
              help="Network to use (default: alfajores when QUIZELO_ENV=dev, else celo)")
@click.option("--env", "env", envvar="QUIZELO_ENV", default=None, hidden=True)
@click.option("--ai-key", envvar="QUIZELO_AI_API_KEY", default=None, help="API key for question generation")
@click.option("--fee-token", default=None, help="Payment and fee token address (default: cUSD)")
@click.option("--minipay", "constrained_host", is_flag=True, default=False,
              help="Pay network fees in the payment stablecoin")
@click.option("--yes", "-y", "assume_yes", is_flag=True, default=False, help="Sign without confirmation")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Debug logging")
@click.pass_context
def cli(ctx, rpc, key, config_path, contract, network, env, ai_key, fee_token,
        constrained_host, assume_yes, verbose):
    """Quizelo: paid Celo quizzes with on-chain rewards."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = load_config(config_path)
    ctx.ensure_object(dict)

    try:
        settings = Settings.from_config(
            cfg,
            network=network or (network_for_env(env) if env else None),
            rpc_url=rpc,
            contract_address=contract,
            private_key=read_private_key(key or cfg.get("private_key")),
            ai_api_key=ai_key,
            fee_token=fee_token,
            constrained_host=constrained_host or None,
        )
    except (TypeError, ValueError) as e:
        raise click.ClickException(f"Invalid config: {e}")
    ctx.obj["settings"] = settings
    ctx.obj["assume_yes"] = assume_yes


def run(ctx, coro_fn, *args):
    """Build an orchestrator and run ``coro_fn(orchestrator, *args)``."""
    settings = ctx.obj["settings"]

    async def main():
        orchestrator = await make_orchestrator(settings, ctx.obj["assume_yes"])
        return await coro_fn(orchestrator, *args)

    return asyncio.run(main())


def tx_link(settings: Settings, tx_hash: str) -> str:
    return f"{settings.chain.explorer}/tx/{tx_hash}"


@cli.command()
@click.pass_context
def status(ctx):
    """Show account, quiz fee, limits and contract stats."""
    settings = ctx.obj["settings"]

    async def show(orch: QuizSessionOrchestrator):
        state = orch.state
        await state.refresh()
        token = state.token
        decimals = await orch.ledger.decimals(token)

        click.echo(f"Network:             {settings.network} ({settings.chain_id})")
        click.echo(f"Contract:            {orch.ledger.address}")
        click.echo(f"Account:             {orch.address}")
        click.echo(f"Token:               {token}")
        if state.quiz_fee is not None:
            click.echo(f"Quiz fee:            {format_units(state.quiz_fee, decimals)}")
        if state.balance is not None:
            click.echo(f"Balance:             {format_units(state.balance, decimals)}")

        info = state.user_info
        if info:
            click.echo(f"\nQuizzes today:       {info.daily_count}")
            click.echo(f"Won today:           {info.won_today}")
            click.echo(f"Can quiz:            {info.can_quiz}")
            if not info.can_quiz:
                wait = info.seconds_until_next_quiz(orch.clock())
                click.echo(f"Next quiz in:        {wait // 60}m {wait % 60}s")

        stats = state.contract_stats
        if stats:
            click.echo(f"\nContract balance:    {format_units(stats.balance, decimals)}")
            click.echo(f"Operational:         {stats.operational}")
            click.echo(f"Active quizzes:      {stats.active_quiz_count}")
            click.echo(f"Total quizzes:       {stats.total_quizzes}")
            click.echo(f"Total rewards:       {format_units(stats.total_rewards, decimals)}")

        user = state.user_stats
        if user:
            click.echo(f"\nBest score:          {user.best_score}%")
            click.echo(f"Average score:       {user.average_score}%")
            click.echo(f"Wins:                {user.total_wins}")
            click.echo(f"Streak:              {user.current_streak} (longest {user.longest_streak})")
            click.echo(f"Earnings:            {format_units(user.total_earnings, decimals)}")

        click.echo(f"\nActive sessions:     {len(state.active_sessions)}")

    run(ctx, show)


async def _start(orch: QuizSessionOrchestrator, settings: Settings, token: str, amount: Decimal):
    decimals = await orch.ledger.decimals(token)
    base = to_base_units(amount, decimals)
    result = await orch.start_quiz(
        token, base,
        on_approval_needed=lambda: click.echo("Approving token spend..."),
        on_approval_complete=lambda h: click.echo(f"Approval confirmed: {h}"),
    )
    if not result.success:
        raise click.ClickException(result.message)
    click.echo(result.message)
    click.echo(f"Transaction: {tx_link(settings, result.tx_hash)}")
    if result.identifier_missing:
        click.echo("Warning: look the session up with `quizelo status` before claiming")
    else:
        click.echo(f"Session: {result.session_id}")
    return result, base, decimals


@cli.command()
@click.option("--amount", required=True, type=Decimal, help="Bet in token units (e.g. 0.05)")
@click.option("--token", default=None, help="Payment token (default: configured fee token)")
@click.pass_context
def start(ctx, amount, token):
    """Pay into a new quiz session."""
    settings = ctx.obj["settings"]

    async def go(orch):
        await _start(orch, settings, token or settings.fee_token, amount)

    run(ctx, go)


@cli.command()
@click.argument("session_id")
@click.argument("score", type=click.IntRange(0, 100))
@click.pass_context
def claim(ctx, session_id, score):
    """Submit SCORE (0-100) for SESSION_ID."""
    settings = ctx.obj["settings"]

    async def go(orch):
        result = await orch.claim_reward(session_id, score)
        if not result.success:
            raise click.ClickException(result.message)
        click.echo(result.message)
        click.echo(f"Transaction: {tx_link(settings, result.tx_hash)}")

    run(ctx, go)


@cli.command()
@click.argument("session_id")
@click.pass_context
def cleanup(ctx, session_id):
    """Clear an expired session from the active list."""
    settings = ctx.obj["settings"]

    async def go(orch):
        result = await orch.cleanup_expired_quiz(session_id)
        if not result.success:
            raise click.ClickException(result.message)
        click.echo(result.message)
        click.echo(f"Transaction: {tx_link(settings, result.tx_hash)}")

    run(ctx, go)


@cli.command()
@click.argument("session_id")
@click.pass_context
def session(ctx, session_id):
    """Show a quiz session and whether it can still be claimed."""

    async def show(orch):
        try:
            s = await orch.ledger.get_quiz_session(session_id)
        except LedgerReadError as e:
            raise click.ClickException(str(e))
        now = orch.clock()
        click.echo(f"Session:             {s.session_id}")
        click.echo(f"Owner:               {s.owner}")
        click.echo(f"Token:               {s.token}")
        click.echo(f"Active:              {s.active}")
        click.echo(f"Claimed:             {s.claimed}")
        click.echo(f"Score:               {s.score}")
        click.echo(f"Reward:              {s.reward}")
        click.echo(f"Time left:           {s.seconds_left(now)}s")
        rejection = s.claim_rejection(orch.address, now)
        click.echo(f"Claimable:           {'yes' if rejection is None else 'no, ' + rejection}")
        resumable = await orch.find_resumable_session(session_id)
        click.echo(f"Resumable:           {'yes' if resumable else 'no'}")

    run(ctx, show)


@cli.command()
@click.argument("score", type=click.IntRange(0, 100))
@click.argument("bet", type=Decimal)
def preview(score, bet):
    """Reward for SCORE on a BET (token units)."""
    reward = calculate_reward(score, bet)
    click.echo(f"Multiplier: {reward_multiplier(score)}x")
    click.echo(f"Reward:     {reward}")
    if not can_claim(score):
        click.echo("Below the passing score; nothing to claim")


@cli.command()
def topics():
    """List quiz topics."""
    for topic in TOPICS:
        click.echo(f"{topic.id:<22} {topic.title}: {topic.description}")


@cli.command()
@click.argument("topic_id")
@click.option("--out", "out_path", default=None, type=click.Path(), help="Write questions to a JSON file")
@click.pass_context
def questions(ctx, topic_id, out_path):
    """Generate a question set for TOPIC_ID."""
    topic = get_topic(topic_id)
    generator = make_generator(ctx.obj["settings"])
    try:
        generated = asyncio.run(generator.generate(topic))
    except GenerationError as e:
        raise click.ClickException(str(e))

    payload = [q.to_dict() for q in generated]
    if out_path:
        with open(out_path, "w") as f:
            json.dump(payload, f, indent=2)
        click.echo(f"Wrote {len(payload)} questions to {out_path}")
    else:
        click.echo(json.dumps(payload, indent=2))
    counts = answer_distribution(generated)
    click.echo("Answers: " + ", ".join(f"{LETTERS[i]}={n}" for i, n in enumerate(counts)), err=True)


@cli.command()
@click.argument("topic_id")
@click.option("--amount", required=True, type=Decimal, help="Bet in token units (e.g. 0.05)")
@click.option("--token", default=None, help="Payment token (default: configured fee token)")
@click.pass_context
def play(ctx, topic_id, amount, token):
    """Generate questions, pay in, answer them and claim the reward."""
    settings = ctx.obj["settings"]
    topic = get_topic(topic_id)
    generator = make_generator(settings)

    async def go(orch):
        try:
            generated = await generator.generate(topic)
        except GenerationError as e:
            raise click.ClickException(str(e))

        result, base, decimals = await _start(orch, settings, token or settings.fee_token, amount)
        if result.identifier_missing:
            return

        answers = []
        for i, q in enumerate(generated):
            click.echo(f"\n{i + 1}. {q.question}")
            for j, option in enumerate(q.options):
                click.echo(f"   {LETTERS[j]}) {option}")
            choice = click.prompt("Answer", type=click.Choice(list(LETTERS), case_sensitive=False))
            marked = mark_answer(generated, i, LETTERS.index(choice.upper()))
            if marked.is_correct:
                click.echo("Correct!")
            else:
                click.echo(f"Wrong, it was {LETTERS[marked.correct_answer]}. {marked.explanation}")
            answers.append(marked.user_answer)

        score = score_answers(generated, answers)
        click.echo(f"\nScore: {score.correct}/{score.total} ({score.percentage}%)")
        if not can_claim(score.percentage):
            click.echo("Below 60%, no reward this time")
            return
        reward = calculate_reward(score.percentage, base)
        click.echo(f"Claiming up to {format_units(reward, decimals)}...")
        claimed = await orch.claim_reward(result.session_id, score.percentage)
        if not claimed.success:
            raise click.ClickException(claimed.message)
        click.echo(claimed.message)
        click.echo(f"Transaction: {tx_link(settings, claimed.tx_hash)}")

    run(ctx, go)


@cli.command()
@click.option("--interval", default=None, type=float, help="Seconds between refreshes (default: config or 30)")
@click.option("--count", default=None, type=int, help="Stop after N refreshes (default: run until Ctrl+C)")
@click.pass_context
def watch(ctx, interval, count):
    """Poll user info, contract stats and active sessions."""
    settings = ctx.obj["settings"]

    async def go(orch):
        done = asyncio.Event()
        seen = 0

        def on_refresh(updated):
            nonlocal seen
            seen += 1
            state = orch.state
            parts = [f"active={len(state.active_sessions)}"]
            if View.USER_INFO in updated and state.user_info:
                parts.append(f"today={state.user_info.daily_count} can_quiz={state.user_info.can_quiz}")
            if View.CONTRACT_STATS in updated and state.contract_stats:
                parts.append(f"operational={state.contract_stats.operational}")
            click.echo(" ".join(parts))
            if count is not None and seen >= count:
                done.set()

        loop = RefreshLoop(orch.state, interval=interval or settings.refresh_interval,
                           on_refresh=on_refresh)
        async with loop:
            await done.wait()

    try:
        run(ctx, go)
    except KeyboardInterrupt:
        click.echo("Stopped")


if __name__ == "__main__":
    cli()
