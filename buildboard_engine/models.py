from enum import Enum


class BuildStatus(Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    @classmethod
    def from_success(cls, success: bool) -> 'BuildStatus':
        return cls.SUCCESS if success else cls.FAILURE


class Candidate(Enum):
    DEVELOPMENT = "DEVELOPMENT"
    RELEASE = "RELEASE"


BADGE_COLORS = {
    BuildStatus.SUCCESS: "rgb(30, 220, 30)",
    BuildStatus.FAILURE: "rgb(220, 30, 30)",
}
