"""Application interfaces (protocols) implemented by infrastructure."""

from mailsync.application.interfaces.services import IProgressPublisher

__all__ = ["IProgressPublisher"]
