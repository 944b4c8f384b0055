from __future__ import annotations


class ProofChainError(Exception):
    """Base class for errors reported back to the caller with a reason string."""

    http_status = 400


class InvalidVote(ProofChainError):
    pass


class InvalidStakeAmount(ProofChainError):
    pass


class InvalidVotingWindow(ProofChainError):
    pass


class UnknownTokenType(ProofChainError):
    def __init__(self, token_type: object) -> None:
        super().__init__(f"Unknown token type: {token_type}")
        self.token_type = token_type


class TokenInactive(ProofChainError):
    pass


class VotingNotStarted(ProofChainError):
    pass


class VotingClosed(ProofChainError):
    pass


class VotingStillActive(ProofChainError):
    pass


class ClaimWindowNotOpen(ProofChainError):
    pass


class CommitMismatch(ProofChainError):
    pass


class DuplicateVote(ProofChainError):
    http_status = 409


class AlreadyRevealed(ProofChainError):
    http_status = 409


class AlreadyClaimed(ProofChainError):
    http_status = 409


class NotFinalized(ProofChainError):
    http_status = 409


class ContentNotFound(ProofChainError):
    http_status = 404

    def __init__(self, ref: object) -> None:
        super().__init__(f"Content not found: {ref}")
        self.ref = ref


class VoteNotFound(ProofChainError):
    http_status = 404


class TokenNotFound(ProofChainError):
    http_status = 404

    def __init__(self, token_type: object) -> None:
        super().__init__(f"Token not found: {token_type}")
        self.token_type = token_type


class PriceUnavailable(ProofChainError):
    """The price source could not produce a price. Never defaulted to zero."""

    http_status = 502
