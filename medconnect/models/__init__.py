from medconnect.domain.auth.models import User
from medconnect.domain.patients.models import Patient
from medconnect.domain.doctors.models import Doctor
from medconnect.domain.prescriptions.models import Prescription, PrescriptionItem, IssuedToken, PharmacyLog
from medconnect.domain.notifications.models import OutboxEvent
