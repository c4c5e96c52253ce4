from sigverify.verification.worker import Outcome, Worker

__all__ = ["Outcome", "Worker"]
