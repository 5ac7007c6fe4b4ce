from memeswap.models.user import User
from memeswap.models.wallet import Wallet
from memeswap.models.coin import MemeCoin, PriceHistory, SOL_MINT, SOL_DECIMALS
from memeswap.models.portfolio import PortfolioAsset
from memeswap.models.trade import Trade, TradeType, TradeStatus, TERMINAL_STATUSES
from memeswap.models.transfer import Deposit, Withdrawal, WithdrawalStatus
