from vault.models.profile import Profile, ProfileRole
from vault.models.deposit import Deposit, DepositStatus
from vault.models.withdrawal import Withdrawal, WithdrawalStatus
from vault.models.position import StrategyPosition, PositionSide, PositionStatus
