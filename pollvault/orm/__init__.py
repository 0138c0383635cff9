from .base import Base

from .hackathon import Hackathon, HackathonStatus
from .team import Team
from .poll import Poll, PollEntry, VotingMode, VotingPermissions, VotingSequence
from .electorate import VoterToken, PollJudge, DeliveryStatus
from .ballot import Ballot, VoteType
from .integrity import IntegrityCommitment, CommitmentType
from .participation import Participation, ParticipationRole
from .submission import HackathonSubmission
