from abc import ABC, abstractmethod
from collections.abc import Collection, Sequence


class BaseAIService(ABC):
    """Contract for summarization and classification services."""

    @abstractmethod
    def summarize(self, texts: Sequence[str]) -> str:
        """Return one summary for a logical batch of any size.

        Raises:
            AdapterTransientError: if the call may succeed when retried.
            AdapterPermanentError: if the request is rejected.
        """

    @abstractmethod
    def classify(self, text: str, labels: Collection[str]) -> str:
        """Return one label from ``labels``, or ``unclassified``.

        Raises:
            AdapterTransientError: if the call may succeed when retried.
            AdapterPermanentError: if the label set is invalid or the request
                is rejected.
        """
