from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from proofchain.models.errors import (
    InvalidVotingWindow,
    ProofChainError,
    TokenNotFound,
    VotingStillActive,
)
from proofchain.models.types import ContentItem, SupportedToken
from proofchain.pricing.price_source import parse_token_type
from proofchain.storage.database import STATUS_FILTERS
from proofchain.storage.ids import resolve_content

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

MAX_PAGE_SIZE = 100


def _get_database():
    return current_app.config["DATABASE"]


def _get_voting():
    return current_app.config["VOTING"]


def _get_engine():
    return current_app.config["ENGINE"]


def _get_rewards():
    return current_app.config["REWARDS"]


def _get_converter():
    return current_app.config["CONVERTER"]


def _error_response(exc: ProofChainError) -> tuple:
    return jsonify({"error": str(exc), "code": type(exc).__name__}), exc.http_status


def _parse_datetime(value: str | None, field_name: str) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        raise InvalidVotingWindow(f"Invalid {field_name}: {value!r}") from None


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _public_id(content: ContentItem):
    return content.content_id if content.content_id is not None else content.id


def _content_payload(content: ContentItem) -> dict:
    policy = _get_engine().policy
    return {
        "id": content.id,
        "contentId": content.content_id,
        "title": content.title,
        "description": content.description,
        "contentType": content.content_type,
        "contentUrl": content.content_url,
        "creator": content.creator,
        "submissionTime": _isoformat(content.submission_time),
        "votingStartTime": _isoformat(content.voting_start_time),
        "votingEndTime": _isoformat(policy.voting_end(content)),
        "status": policy.status(content).value,
        "timeRemaining": int(policy.time_remaining(content).total_seconds()),
        "totalVotes": len(content.revealed_votes),
        "isFinalized": content.is_finalized,
        "winningOption": (
            int(content.winning_option) if content.winning_option is not None else None
        ),
        "participantCount": content.participant_count,
        "rewardInfo": _get_rewards().reward_info(content),
    }


def _results_payload(content: ContentItem) -> dict:
    consensus = content.consensus or {}
    return {
        "contentId": _public_id(content),
        "title": content.title,
        "status": _get_engine().policy.status(content).value,
        "verdict": consensus.get("verdict"),
        "confidence": consensus.get("confidence", 0),
        "totalWeight": consensus.get("totalWeight", 0),
        "totalUSDValue": consensus.get("totalUSDValue", 0),
        "consensusReached": consensus.get("consensusReached", False),
        "breakdown": consensus.get("breakdown", {}),
        "isFinalized": content.is_finalized,
        "winningOption": (
            int(content.winning_option) if content.winning_option is not None else None
        ),
        "totalVotes": len(content.revealed_votes),
        "totalParticipants": content.participant_count,
        "finalizedAt": _isoformat(content.finalized_at),
        "totalStakedByToken": {
            token.name: str(amount) for token, amount in content.total_staked_by_token.items()
        },
    }


def _finalize_and_reload(content: ContentItem) -> ContentItem:
    engine = _get_engine()
    if not content.is_finalized:
        if not engine.policy.has_ended(content):
            raise VotingStillActive("Voting is still active. Results not available yet.")
        engine.finalize_if_due(content)
        content = _get_database().get_content(content.id)
    return content


@api.route("/content", methods=["POST"])
def create_content() -> tuple:
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body must be JSON"}), 400

    try:
        content = _get_voting().create_content(
            title=data.get("title", ""),
            creator=data.get("creator", ""),
            description=data.get("description", ""),
            content_type=data.get("contentType", "text"),
            content_url=data.get("contentUrl", ""),
            voting_start_time=_parse_datetime(data.get("votingStartTime"), "votingStartTime"),
            voting_end_time=_parse_datetime(data.get("votingEndTime"), "votingEndTime"),
        )
        return jsonify(_content_payload(content)), 201
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error creating content: %s", exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/content", methods=["GET"])
def list_content() -> tuple:
    try:
        page = max(1, request.args.get("page", 1, type=int))
        limit = min(MAX_PAGE_SIZE, max(1, request.args.get("limit", 10, type=int)))
        status = request.args.get("status") or None
        if status is not None and status not in STATUS_FILTERS:
            return jsonify({
                "error": f"Unknown status: {status}",
                "allowed": list(STATUS_FILTERS),
            }), 400

        items, total = _get_database().list_contents(
            status=status,
            sort_by=request.args.get("sortBy", "submissionTime"),
            sort_order=request.args.get("sortOrder", "desc"),
            skip=(page - 1) * limit,
            limit=limit,
            now=_get_engine().policy.now(),
        )
        return jsonify({
            "contents": [_content_payload(item) for item in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": -(-total // limit),
            },
        })
    except Exception as exc:
        logger.exception("Error listing content: %s", exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/content/<content_ref>", methods=["GET"])
def get_content(content_ref: str) -> tuple:
    try:
        content = resolve_content(_get_database(), content_ref)
        return jsonify(_content_payload(content))
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error fetching content %s: %s", content_ref, exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/consensus/vote", methods=["POST"])
def submit_vote() -> tuple:
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body must be JSON"}), 400

    content_ref = data.get("contentId")
    if content_ref is None or data.get("vote") is None:
        return jsonify({"error": "Missing required fields: contentId, vote"}), 400

    try:
        voting = _get_voting()
        vote = voting.submit_vote(
            content_ref,
            voter=data.get("voter", ""),
            vote=data.get("vote"),
            token_type=data.get("tokenType"),
            stake_amount=data.get("stakeAmount"),
            confidence=data.get("confidence"),
        )
        content = _get_database().get_content(vote.content_id)
        return jsonify({
            "message": "Vote submitted successfully",
            "contentId": _public_id(content),
            "vote": int(vote.vote),
            "totalVotes": len(content.revealed_votes),
        }), 201
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error submitting vote: %s", exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/content/<content_ref>/commit", methods=["POST"])
def commit_vote(content_ref: str) -> tuple:
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body must be JSON"}), 400

    try:
        vote = _get_voting().commit_vote(
            content_ref,
            voter=data.get("voter", ""),
            commit_hash=data.get("commitHash", ""),
            token_type=data.get("tokenType"),
            stake_amount=data.get("stakeAmount"),
        )
        return jsonify({"message": "Vote committed", "voter": vote.voter}), 201
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error committing vote on %s: %s", content_ref, exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/content/<content_ref>/reveal", methods=["POST"])
def reveal_vote(content_ref: str) -> tuple:
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body must be JSON"}), 400

    try:
        vote = _get_voting().reveal_vote(
            content_ref,
            voter=data.get("voter", ""),
            vote=data.get("vote"),
            confidence=data.get("confidence"),
            salt=data.get("salt", ""),
        )
        return jsonify({
            "message": "Vote revealed",
            "voter": vote.voter,
            "vote": int(vote.vote),
            "confidence": vote.confidence,
        })
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error revealing vote on %s: %s", content_ref, exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/results/<content_ref>", methods=["GET"])
def get_results(content_ref: str) -> tuple:
    try:
        content = resolve_content(_get_database(), content_ref)
        content = _finalize_and_reload(content)
        return jsonify(_results_payload(content))
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error getting voting results for %s: %s", content_ref, exc)
        return jsonify({"error": "Failed to get voting results"}), 500


@api.route("/results/<content_ref>/finalize", methods=["POST"])
def finalize_results(content_ref: str) -> tuple:
    try:
        content = resolve_content(_get_database(), content_ref)
        if not content.is_finalized and not _get_engine().policy.has_ended(content):
            raise VotingStillActive("Cannot finalize active voting")
        content = _finalize_and_reload(content)
        return jsonify(_results_payload(content))
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error finalizing voting results for %s: %s", content_ref, exc)
        return jsonify({"error": "Failed to finalize voting results"}), 500


@api.route("/results/<content_ref>/status", methods=["GET"])
def finalization_status(content_ref: str) -> tuple:
    try:
        content = resolve_content(_get_database(), content_ref)
        return jsonify(_get_engine().finalization_status(content))
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error getting finalization status for %s: %s", content_ref, exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/content/<content_ref>/claim-reward", methods=["POST"])
def claim_reward(content_ref: str) -> tuple:
    try:
        content = resolve_content(_get_database(), content_ref)
        result = _get_rewards().claim_reward(content)
        return jsonify({
            "message": "Reward claimed",
            "contentId": _public_id(content),
            "reward": result.reward,
            "claimedAt": result.claimed_at.isoformat(),
        })
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error claiming reward for %s: %s", content_ref, exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/users/<address>/votes", methods=["GET"])
def voting_history(address: str) -> tuple:
    try:
        return jsonify({"votes": _get_voting().voting_history(address)})
    except Exception as exc:
        logger.exception("Error getting voting history for %s: %s", address, exc)
        return jsonify({"error": str(exc)}), 500


def _token_payload(token: SupportedToken) -> dict:
    return {
        "tokenType": int(token.token_type),
        "name": token.name,
        "symbol": token.symbol,
        "decimals": token.decimals,
        "currentPriceUSD": str(token.current_price_usd),
        "isActive": token.is_active,
        "minStakeAmount": token.min_stake_amount,
        "bonusMultiplier": token.bonus_multiplier,
        "lastPriceUpdate": _isoformat(token.last_price_update),
    }


@api.route("/tokens", methods=["GET"])
def list_tokens() -> tuple:
    try:
        active_only = request.args.get("active", "false").lower() == "true"
        tokens = _get_database().list_supported_tokens(active_only=active_only)
        return jsonify({"tokens": [_token_payload(token) for token in tokens]})
    except Exception as exc:
        logger.exception("Error listing tokens: %s", exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/tokens/<token_ref>", methods=["GET"])
def get_token(token_ref: str) -> tuple:
    try:
        token_type = parse_token_type(token_ref)
        token = _get_database().get_supported_token(token_type)
        if token is None:
            raise TokenNotFound(token_type.name)
        return jsonify(_token_payload(token))
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error getting token %s: %s", token_ref, exc)
        return jsonify({"error": str(exc)}), 500


@api.route("/tokens/convert", methods=["POST"])
def convert_to_usd() -> tuple:
    data = request.get_json(silent=True) or {}
    token_ref = data.get("tokenType")
    amount = data.get("amount")
    if token_ref is None or amount is None:
        return jsonify({"error": "Token type and amount are required"}), 400

    try:
        token_type = parse_token_type(token_ref)
        usd_value = _get_converter().usd_value(token_type, amount)
        return jsonify({
            "tokenType": int(token_type),
            "symbol": token_type.name,
            "amount": str(amount),
            "usdValue": str(usd_value),
        })
    except ProofChainError as exc:
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Error converting %s %s to USD: %s", amount, token_ref, exc)
        return jsonify({"error": str(exc)}), 500
