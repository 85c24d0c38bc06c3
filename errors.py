class AddonManagerError(Exception):
	"""Base error. status_code is what a route handler reports."""

	status_code = 500

	def __init__(self, message: str):
		super().__init__(message)
		self.message = message


class ValidationError(AddonManagerError):
	status_code = 400


class FetchError(AddonManagerError):
	status_code = 400


class DuplicateError(AddonManagerError):
	status_code = 400


class NotFoundError(AddonManagerError):
	status_code = 404


class InvalidCredentialsError(AddonManagerError):
	status_code = 401


class RegistrationError(AddonManagerError):
	status_code = 400


class RemoteAPIError(AddonManagerError):
	"""Stremio API answered non-2xx or could not be reached."""

	status_code = 500


class InternalError(AddonManagerError):
	status_code = 500
