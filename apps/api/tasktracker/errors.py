from __future__ import annotations


class DataServiceError(RuntimeError):
  pass


class ValidationError(DataServiceError):
  pass


class NotFoundError(DataServiceError):
  pass


class RoomNotFoundError(NotFoundError):
  pass


class NoRoomSelectedError(DataServiceError):
  def __init__(self, message: str = "No room selected") -> None:
    super().__init__(message)


class PermissionDeniedError(DataServiceError):
  pass


class NotAuthenticatedError(PermissionDeniedError):
  def __init__(self, message: str = "User not authenticated") -> None:
    super().__init__(message)


class AuthenticationError(PermissionDeniedError):
  pass


class NotInitializedError(DataServiceError):
  pass


class StoreConnectionError(DataServiceError):
  pass


class UnsupportedOperationError(DataServiceError, NotImplementedError):
  pass


class RoomCodeConflictError(ValidationError):
  pass
