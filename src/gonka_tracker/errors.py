class UpstreamError(Exception):
    """Every configured upstream base URL failed for a request."""


class ParticipantNotFoundError(LookupError):
    def __init__(self, participant_id: str):
        self.participant_id = participant_id
        super().__init__(f"Participant {participant_id} not found")
