"""Abstract base class for booking stores.

Defines the interface to the authoritative record of bookings. Any
backend (a spreadsheet web app, the bundled reference server, an
in-process table) implements this ABC.
"""

from abc import ABC, abstractmethod

from studio_booking.errors import BookingValidationError
from studio_booking.models.booking import Booking, NewBooking


class BookingStore(ABC):
    """Authoritative booking table.

    Subclasses must implement listing, creation and deletion. They touch
    no client-side state: the cache owns that.
    """

    @property
    def is_configured(self) -> bool:
        """False when the store has no endpoint and cannot accept writes."""
        return True

    @property
    def supports_endpoint(self) -> bool:
        """True for stores that talk to a remote endpoint ``configure`` can change."""
        return False

    def configure(self, endpoint: str) -> None:
        """Point the store at a new endpoint.

        Raises:
            BookingValidationError: the store has no configurable endpoint.
        """
        raise BookingValidationError(
            f"{type(self).__name__} has no configurable endpoint."
        )

    @abstractmethod
    async def list_all(self) -> list[Booking]:
        """Return every booking the store holds, in no particular order.

        Raises:
            RemoteUnavailableError: the store could not be reached.
            RemoteRejectedError: the store answered with a failure.
        """

    @abstractmethod
    async def create(self, new: NewBooking) -> Booking:
        """Persist ``new`` and return it with its assigned id.

        Raises:
            ConflictError: the store's own overlap check rejected it.
            RemoteUnavailableError: the store could not be reached.
            RemoteRejectedError: any other failure reported by the store.
        """

    @abstractmethod
    async def delete_by_id(self, booking_id: str) -> None:
        """Delete the booking with ``booking_id``.

        Raises:
            NotFoundError: the store has no such booking.
            RemoteUnavailableError: the store could not be reached.
        """
