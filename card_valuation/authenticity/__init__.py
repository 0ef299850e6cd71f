from card_valuation.authenticity.verifier import AuthenticityVerifier

__all__ = ["AuthenticityVerifier"]
