"""CLI for running operator scenarios against an in-memory vault.

A scenario is a JSON (or YAML, by suffix) document:

    {
      "config":   {... VaultConfig fields ...},
      "roles":    {"PROTOCOL_ADMIN": ["admin"], "MANAGER": ["manager"], ...},
      "signers":  {"alice": "alice-secret"},
      "tokens":   [{"symbol": "WBTC", "name": "Wrapped BTC", "decimals": 8}],
      "balances": [{"wallet": "alice", "token": "WBTC", "amount": 100000000}],
      "actions":  [{"action": "add_collateral", "caller": "admin",
                    "token": "WBTC", "rate": "1000000000000000000", "decimals": 8},
                   {"action": "view_status"}]
    }

See scenario.py for the document and action models.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, List, Mapping, Tuple, Union

from pydantic import ValidationError

from .access import RoleRegistry
from .config import build_vault, load_document
from .core import VaultError
from .custody import Token
from .logging_utils import configure_logging
from .scenario import ACTION_MODELS, RequestSpec, Scenario, describe_errors
from .settlement import ManagedWithdrawalVault
from .signatures import HmacSigner

logger = logging.getLogger(__name__)


# ============================================================================
# ACTIONS
# ============================================================================

def _add_collateral(vault, signer, a):
    kind = vault.registry.add_collateral(a.caller, a.token, a.rate, a.decimals)
    return {"token": kind.token, "rate": kind.rate_to_base, "decimals": kind.decimals}


def _remove_collateral(vault, signer, a):
    vault.registry.remove_collateral(a.caller, a.token)
    return {"allowed": vault.registry.allowed_collateral()}


def _update_rate(vault, signer, a):
    old, new = vault.registry.update_rate(a.caller, a.token, a.rate)
    return {"old_rate": old, "new_rate": new}


def _deposit(vault, signer, a):
    return {"shares": vault.deposit(a.caller, a.amount, a.receiver or a.caller)}


def _deposit_collateral(vault, signer, a):
    return {"shares": vault.deposit_collateral(a.caller, a.token, a.amount, a.receiver or a.caller)}


def _fund_redemptions(vault, signer, a):
    vault.strategy.deposit_redemption_funds(a.caller, a.amount)
    return {"reserve": vault.strategy.redemption_reserve()}


def _redeem(vault, signer, a):
    owner = a.owner or a.caller
    return {"assets": vault.redeem(a.caller, a.shares, a.receiver or owner, owner)}


def _withdraw(vault, signer, a):
    owner = a.owner or a.caller
    return {"shares": vault.withdraw(a.caller, a.amount, a.receiver or owner, owner)}


def _transfer(vault, signer, a):
    vault.transfer(a.caller, a.to, a.shares)
    return {"from": vault.balance_of(a.caller), "to": vault.balance_of(a.to)}


def _approve(vault, signer, a):
    vault.approve(a.caller, a.spender, a.shares)
    return {"allowance": vault.allowance(a.caller, a.spender)}


def _sign(vault, signer, spec: RequestSpec):
    request = spec.to_request()
    return request, signer.sign(spec.signed_by or request.owner, vault.request_digest(request))


def _sign_and_redeem(vault, signer, a):
    request, signature = _sign(vault, signer, a.request)
    return {"assets": vault.redeem_request(a.caller, request, signature)}


def _batch_sign_and_redeem(vault, signer, a):
    signed = [_sign(vault, signer, spec) for spec in a.requests]
    paid = vault.batch_redeem_requests(
        a.caller, [r for r, _ in signed], [s for _, s in signed],
    )
    return {"assets": paid}


def _batch_redeem(vault, signer, a):
    return {"assets": vault.batch_redeem(a.caller, a.shares, a.receivers, a.owners, a.min_assets)}


def _advance_time(vault, signer, a):
    vault.advance_time(a.time)
    return {"time": vault.current_time}


def _view_status(vault, signer, a):
    return vault.status()


ACTIONS: Dict[str, Callable[[ManagedWithdrawalVault, HmacSigner, Any], Any]] = {
    "add_collateral": _add_collateral,
    "remove_collateral": _remove_collateral,
    "update_rate": _update_rate,
    "deposit": _deposit,
    "deposit_collateral": _deposit_collateral,
    "fund_redemptions": _fund_redemptions,
    "redeem": _redeem,
    "withdraw": _withdraw,
    "transfer": _transfer,
    "approve": _approve,
    "sign_and_redeem": _sign_and_redeem,
    "batch_sign_and_redeem": _batch_sign_and_redeem,
    "batch_redeem": _batch_redeem,
    "advance_time": _advance_time,
    "view_status": _view_status,
}


# ============================================================================
# SCENARIO RUNNER
# ============================================================================

def build_from_scenario(
    scenario: Union[Scenario, Mapping[str, Any]],
) -> Tuple[ManagedWithdrawalVault, HmacSigner]:
    """Create the vault, roles, signer, tokens and opening balances of a scenario."""
    if not isinstance(scenario, Scenario):
        scenario = Scenario.model_validate(scenario)
    roles = RoleRegistry(scenario.roles)
    signer = HmacSigner({
        account: secret.encode("utf-8") for account, secret in scenario.signers.items()
    })
    vault = build_vault(scenario.config.to_config(), roles, signer)
    for token in scenario.tokens:
        vault.custody.register_token(Token(token.symbol, token.name or token.symbol, token.decimals))
    for row in scenario.balances:
        vault.custody.ensure_wallet(row.wallet)
        vault.custody.mint(row.token, row.wallet, row.amount)
    return vault, signer


def _failure(name: str, error: str, message: str) -> Dict[str, Any]:
    return {"action": name, "ok": False, "error": error, "message": message}


def run_scenario(
    scenario: Union[Scenario, Mapping[str, Any]],
    stop_on_error: bool = False,
) -> Tuple[ManagedWithdrawalVault, List[Dict[str, Any]]]:
    """
    Execute every action of scenario in order.

    Malformed actions and vault errors are recorded per action; an unknown
    action name or an invalid document envelope raises.

    Returns:
        (vault, results) where each result has 'action', 'ok' and either
        'result' or 'error' / 'message'
    """
    if not isinstance(scenario, Scenario):
        scenario = Scenario.model_validate(scenario)
    vault, signer = build_from_scenario(scenario)
    results: List[Dict[str, Any]] = []
    for index, raw in enumerate(scenario.actions):
        name = raw.get("action")
        model = ACTION_MODELS.get(name)
        if model is None:
            raise ValueError(f"action #{index}: unknown action {name!r}")
        try:
            action = model.model_validate(raw)
            outcome = ACTIONS[name](vault, signer, action)
        except ValidationError as exc:
            logger.warning("action #%d %s is malformed: %s", index, name, exc)
            results.append(_failure(name, "ValidationError", describe_errors(exc)))
        except VaultError as exc:
            logger.warning("action #%d %s failed: %s", index, name, exc)
            results.append(_failure(name, type(exc).__name__, str(exc)))
        else:
            results.append({"action": name, "ok": True, "result": outcome})
            continue
        if stop_on_error:
            break
    return vault, results


def main(argv: List[str] = None) -> int:
    parser = argparse.ArgumentParser(description="Multi-collateral vault operator CLI")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run", help="run a scenario and print each action result")
    run_parser.add_argument("scenario")
    run_parser.add_argument("--stop-on-error", action="store_true")

    status_parser = sub.add_parser("status", help="run a scenario and print final vault status")
    status_parser.add_argument("scenario")

    args = parser.parse_args(argv)
    configure_logging(getattr(logging, args.log_level.upper(), logging.WARNING))

    try:
        scenario = Scenario.model_validate(load_document(args.scenario))
    except ValidationError as exc:
        print(f"{args.scenario}: invalid scenario: {describe_errors(exc)}", file=sys.stderr)
        return 2

    if args.command == "run":
        _, results = run_scenario(scenario, stop_on_error=args.stop_on_error)
        for result in results:
            print(json.dumps(result, sort_keys=True, default=str))
        return 0 if all(r["ok"] for r in results) else 1

    vault, results = run_scenario(scenario)
    print(json.dumps(vault.status(), sort_keys=True, indent=2, default=str))
    return 0 if all(r["ok"] for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())
