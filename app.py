import time
import streamlit as st
import pandas as pd

from tiermint.config import LaunchConfig, from_wei, to_wei
from tiermint.core import TIER_ORDER
from tiermint.engine import MintEngine
from tiermint.errors import MintError

st.set_page_config(page_title="Tiered Mint Launch Simulator", layout="wide")


def _install_engine(cfg: LaunchConfig, seed: int) -> MintEngine:
    st.session_state.cfg = cfg
    st.session_state.seed = seed
    st.session_state.engine = MintEngine(cfg=cfg, seed=seed)
    return st.session_state.engine


def get_engine() -> MintEngine:
    if "engine" not in st.session_state:
        return _install_engine(LaunchConfig(), 1)
    return st.session_state.engine


def reset_engine(reset_config: bool = False) -> None:
    if reset_config:
        _install_engine(LaunchConfig(), 1)
    else:
        _install_engine(st.session_state.get("cfg", LaunchConfig()), st.session_state.get("seed", 1))


engine = get_engine()

st.title("Tiered Mint Launch Simulator")
st.caption("Time model: 1 block = 12 seconds. Values shown in ether.")

def _fmt_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:0.0f} ms"
    return f"{seconds:0.2f} s"

def _fmt_eth(wei: int) -> str:
    return f"{from_wei(wei):,.4f}"

def _render_kpi_grid(kpis, columns: int = 5) -> None:
    for idx in range(0, len(kpis), columns):
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, kpis[idx: idx + columns]):
            col.metric(label, value)

def _fmt_token_ids(ids) -> str:
    if not ids:
        return "-"
    if list(ids) == list(range(ids[0], ids[0] + len(ids))) and len(ids) > 2:
        return f"#{ids[0]}..#{ids[-1]}"
    return ", ".join(f"#{i}" for i in ids)

def _format_event_meta(meta: dict) -> str:
    if not meta:
        return ""
    parts = []
    for key, value in meta.items():
        if key == "token_ids":
            value = _fmt_token_ids(value)
        elif key == "settlement":
            value = f"{_fmt_eth(value['cost'])} ETH, refund {_fmt_eth(value['overpayment'])}"
        parts.append(f"{key}: {value}")
    return " | ".join(parts)

def _run_action(label: str, fn, *args) -> None:
    try:
        result = fn(*args)
    except MintError as exc:
        st.error(f"{label} failed: {exc.reason} ({exc})")
        return
    if result is None:
        st.success(f"{label}: ok")
    else:
        st.success(f"{label}: {result}")


with st.sidebar:
    st.header("Scenario")
    seed = st.number_input("Seed", min_value=0, value=int(st.session_state.get("seed", 1)), step=1)
    cfg = st.session_state.cfg
    launch_block = st.number_input(
        "Public launch block", min_value=0, value=int(cfg.public_launch_block or 0), step=1
    )
    collectors = st.number_input("Collectors", min_value=1, value=int(cfg.initial_collectors), step=10)
    attempts = st.number_input("Attempts per block", min_value=1, value=int(cfg.attempts_per_block), step=1)
    p_overpay = st.slider("Overpay probability", 0.0, 1.0, float(cfg.p_overpay), 0.01)
    entropy_mode = st.selectbox("Entropy", ["block", "seeded"], index=0 if cfg.entropy_mode == "block" else 1)
    if st.button("Restart simulation"):
        st.session_state.seed = int(seed)
        st.session_state.cfg = LaunchConfig(
            public_launch_block=int(launch_block) or None,
            initial_collectors=int(collectors),
            attempts_per_block=int(attempts),
            p_overpay=float(p_overpay),
            entropy_mode=entropy_mode,
        )
        reset_engine()
        engine = st.session_state.engine
    if st.button("Reset to defaults"):
        reset_engine(reset_config=True)
        engine = st.session_state.engine

    st.header("Run")
    n_blocks = st.number_input("Blocks to advance", min_value=1, value=10, step=1)
    if st.button("Advance"):
        started = time.time()
        engine.step(int(n_blocks))
        st.session_state.last_run = time.time() - started
    if st.button("Run until sold out"):
        started = time.time()
        guard = 0
        while not engine.sold_out() and guard < 5000:
            engine.step(1)
            guard += 1
        st.session_state.last_run = time.time() - started
    if "last_run" in st.session_state:
        st.caption(f"Last run took {_fmt_duration(st.session_state.last_run)}")


tab_overview, tab_tiers, tab_owner, tab_lookup, tab_events = st.tabs(
    ["Overview", "Tiers", "Owner controls", "Token lookup", "Events"]
)

with tab_overview:
    gate = engine.state.gate
    _render_kpi_grid([
        ("Block", f"{engine.block}"),
        ("Minted", f"{engine.total_minted()} / {engine.state.registry.total_capacity()}"),
        ("Circulating", f"{engine.circulating_supply()}"),
        ("Holders", f"{len(engine.state.ledger.holdings)}"),
        ("Proceeds (ETH)", _fmt_eth(engine.proceeds())),
        ("Refunded (ETH)", _fmt_eth(engine.refunds_total_wei)),
        ("Lifecycle", gate.label()),
        ("Price (ETH)", _fmt_eth(engine.mint_price)),
        ("Max / address", f"{engine.state.settings.max_per_address}"),
        ("Collectors", f"{len(engine.collectors)}"),
        ("Re-entries blocked", f"{engine.reentry_blocked}"),
    ])

    supply_df = engine.metrics.supply_df()
    if supply_df.empty:
        st.info("Advance the simulation to collect metrics.")
    else:
        st.subheader("Supply")
        st.line_chart(supply_df.set_index("block")[["minted_total", "remaining_total"]])
        st.subheader("Attempts vs failures per block")
        st.line_chart(supply_df.set_index("block")[["attempts_block", "failures_block", "minted_block"]])

    if engine.failures:
        st.subheader("Rejected requests by reason")
        fail_df = pd.DataFrame(
            sorted(engine.failures.items(), key=lambda kv: kv[1], reverse=True),
            columns=["reason", "count"],
        )
        st.bar_chart(fail_df.set_index("reason"))

with tab_tiers:
    tier_df = pd.DataFrame(engine.tier_status())
    st.dataframe(tier_df, use_container_width=True)
    fill_df = engine.metrics.tier_fill_df()
    if not fill_df.empty:
        st.subheader("Allocated per tier")
        st.line_chart(fill_df[[t for t in TIER_ORDER if t in fill_df.columns]])
    weights = engine.allocator.weights(engine.state.registry)
    st.subheader("Current draw weights")
    st.bar_chart(pd.DataFrame({"tier": list(TIER_ORDER), "weight": weights}).set_index("tier"))

with tab_owner:
    owner = engine.owner
    st.caption(f"Owner: {owner}")
    c1, c2, c3 = st.columns(3)
    if c1.button("Pause"):
        _run_action("pause", engine.pause, owner)
    if c2.button("Unpause"):
        _run_action("unpause", engine.unpause, owner)
    if c3.button("Go public"):
        _run_action("go_public", engine.go_public, owner)

    price_eth = st.text_input("Mint price (ETH)", value=f"{from_wei(engine.mint_price)}")
    if st.button("Set price"):
        try:
            new_price = to_wei(price_eth)
        except ArithmeticError:
            st.error("price is not a number")
        else:
            _run_action("set_mint_price", engine.set_mint_price, owner, new_price)

    cap = st.number_input("Max per address", min_value=1, value=int(engine.state.settings.max_per_address))
    if st.button("Set max per address"):
        _run_action("set_max_per_address", engine.set_max_per_address, owner, int(cap))

    user = st.text_input("Allow-list address")
    extra = st.number_input("Free units", min_value=1, value=1)
    g1, g2 = st.columns(2)
    if g1.button("Grant / top up"):
        _run_action("grant_or_top_up_allow_list", engine.grant_or_top_up_allow_list, owner, user, int(extra))
    if g2.button("Revoke"):
        _run_action("revoke_allow_list", engine.revoke_allow_list, owner, user)

    to = st.text_input("Privileged mint recipient", value=owner)
    units = st.number_input("Units", min_value=1, max_value=int(engine.state.settings.max_per_call), value=1)
    if st.button("Privileged mint"):
        _run_action("mint_privileged", engine.mint_privileged, owner, to, int(units))

    if st.button("Withdraw proceeds"):
        _run_action("withdraw_proceeds", engine.withdraw_proceeds, owner)

with tab_lookup:
    token_id = st.number_input("Token id", min_value=1, value=1, step=1)
    try:
        rec = engine.record(int(token_id))
        st.write({
            "tier": rec.tier,
            "minted_to": rec.owner,
            "minted_block": rec.block,
            "owner": engine.owner_of(rec.token_id),
            "uri": engine.token_uri(rec.token_id),
        })
    except MintError as exc:
        st.info(str(exc))
    address = st.text_input("Holder address")
    if address:
        grant = engine.allow_list_status(address)
        st.write({
            "tokens": engine.tokens_of_owner(address),
            "balance": engine.balance_of(address),
            "minted_via_quota": engine.minted_by(address),
            "quota_headroom": engine.quota_headroom(address),
            "allow_list_eligible": grant.eligible,
            "allow_list_remaining": grant.remaining,
            "wallet_eth": from_wei(engine.wallet_balance(address)),
        })
        held = engine.tokens_of_owner(address)
        if held:
            pick = st.selectbox("Token", held)
            recipient = st.text_input("Transfer to")
            h1, h2 = st.columns(2)
            if h1.button("Transfer"):
                _run_action("transfer", engine.transfer, address, recipient, int(pick))
            if h2.button("Burn"):
                _run_action("burn", engine.burn, address, int(pick))

with tab_events:
    n_events = st.number_input("Show last N events", min_value=10, value=200, step=10)
    rows = []
    for e in engine.log.tail(int(n_events)):
        row = e.to_dict()
        row["meta"] = _format_event_meta(row["meta"])
        rows.append(row)
    st.dataframe(pd.DataFrame(rows), use_container_width=True)
