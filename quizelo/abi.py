"""Minimal contract ABIs, chain ids and token addresses for Quizelo on Celo."""

CELO_CHAIN_ID = 42220
ALFAJORES_CHAIN_ID = 44787

# Celo mainnet stablecoins accepted as fee currency by MiniPay
CUSD_ADDRESS = "0x765DE816845861e75A25fCA122bb6898B8B1282a"
USDC_ADDRESS = "0xcebA9300f2b948710d2653dD7B07f33A8B32118C"
USDT_ADDRESS = "0x48065fbbe25f71C9282ddf5e1cD6D6A887483D5e"

# Analytics consumer credited in the attribution suffix of every call
ATTRIBUTION_CONSUMER = "0x53eaF4CD171842d8144e45211308e5D90B4b0088"

ZERO_BYTES32 = "0x" + "00" * 32
MAX_UINT256 = 2**256 - 1

QUIZELO_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "_token", "type": "address"},
            {"name": "_amount", "type": "uint256"},
        ],
        "name": "startQuiz",
        "outputs": [{"name": "", "type": "bytes32"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_sessionId", "type": "bytes32"},
            {"name": "_score", "type": "uint256"},
        ],
        "name": "claimReward",
        "outputs": [],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [{"name": "_sessionId", "type": "bytes32"}],
        "name": "cleanupExpiredQuiz",
        "outputs": [],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_sessionId", "type": "bytes32"}],
        "name": "getQuizSession",
        "outputs": [
            {"name": "user", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "startTime", "type": "uint256"},
            {"name": "expiryTime", "type": "uint256"},
            {"name": "active", "type": "bool"},
            {"name": "claimed", "type": "bool"},
            {"name": "score", "type": "uint256"},
            {"name": "reward", "type": "uint256"},
            {"name": "timeRemaining", "type": "uint256"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_user", "type": "address"}],
        "name": "getUserInfo",
        "outputs": [
            {"name": "dailyCount", "type": "uint256"},
            {"name": "lastQuizTime", "type": "uint256"},
            {"name": "nextQuizTime", "type": "uint256"},
            {"name": "wonToday", "type": "bool"},
            {"name": "canQuiz", "type": "bool"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_token", "type": "address"}],
        "name": "getContractStats",
        "outputs": [
            {"name": "balance", "type": "uint256"},
            {"name": "activeQuizCount", "type": "uint256"},
            {"name": "minBalance", "type": "uint256"},
            {"name": "operational", "type": "bool"},
            {"name": "totalQuizzes", "type": "uint256"},
            {"name": "totalRewards", "type": "uint256"},
            {"name": "totalFees", "type": "uint256"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_user", "type": "address"}],
        "name": "getUserStats",
        "outputs": [
            {"name": "totalQuizzes", "type": "uint256"},
            {"name": "totalEarnings", "type": "uint256"},
            {"name": "bestScore", "type": "uint256"},
            {"name": "averageScore", "type": "uint256"},
            {"name": "currentStreak", "type": "uint256"},
            {"name": "longestStreak", "type": "uint256"},
            {"name": "totalWins", "type": "uint256"},
            {"name": "lastActivity", "type": "uint256"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "getCurrentQuizTakers",
        "outputs": [{"name": "", "type": "bytes32[]"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "QUIZ_FEE",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "sessionId", "type": "bytes32"},
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": True, "name": "token", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "QuizStarted",
        "type": "event",
    },
]

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
]
