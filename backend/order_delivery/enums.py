import enum


class AccountRole(str, enum.Enum):
    MERCHANT = "Merchant"
    DRIVER = "Driver"


class RegistrationStep(str, enum.Enum):
    """Furthest completed wizard step.

    PHONE_VERIFIED keeps its ordinal slot in the lifecycle but is never
    stored: verification is tracked by `is_phone_verified` on the session.
    PASSWORD_SET is never stored either; it only appears as `next_step`
    while no password has been staged.
    """
    STARTED = "started"
    PHONE_VERIFIED = "phone_verified"
    PASSWORD_SET = "password_set"
    BASIC_INFO_SET = "basic_info_set"
    MERCHANT_INFO_SET = "merchant_info_set"
    DRIVER_INFO_SET = "driver_info_set"
    VEHICLE_INFO_SET = "vehicle_info_set"
    RESIDENCE_INFO_SET = "residence_info_set"
    COMPLETED = "completed"


class VehicleType(str, enum.Enum):
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    BICYCLE = "bicycle"
    VAN = "van"
    TRUCK = "truck"
