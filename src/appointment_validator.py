from dataclasses import dataclass
from datetime import date

from batch_context import BatchContext


@dataclass
class AppointmentCheck:
    has_appointment_on_date: bool
    is_online_consultation: bool
    api_error: bool


class AppointmentValidator:
    """取引日に来院予約があるかを確認する"""

    def __init__(self, client, window_days: int = 7):
        self.client = client
        self.window_days = window_days

    def check(self, patient_id: int, on_date: date, ctx: BatchContext) -> AppointmentCheck:
        lookup = self.client.search_appointments(patient_id, on_date, ctx, window_days=self.window_days)
        if lookup.api_error:
            return AppointmentCheck(False, False, True)

        appointments = lookup.data or []
        has_today = any(apt.date == on_date for apt in appointments)
        # 「Agendamento Online」は予約チャネル。オンライン診察はメモの「consulta online」か telemedicina
        is_online = any(
            apt.telehealth or "consulta online" in (apt.notes or "").lower()
            for apt in appointments
        )
        return AppointmentCheck(has_today, is_online, False)
