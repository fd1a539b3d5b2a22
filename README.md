# chainsync

Wallet middleware for exchanges and custodial services. It follows a chain
through a chain-account service stub and waits until blocks have enough
confirmations. From those blocks it picks out the transfers that touch
addresses a business has registered. Each one is recorded as a deposit, a
withdrawal or an internal transfer (collection, hot-to-cold, cold-to-hot).
It also broadcasts signed withdrawals and internal transfers that are waiting
to go out, and posts each business platform a JSON report of what changed.

## Install

```
pip install chainsync
```

To run the tests:

```
pip install "chainsync[test]"
pytest
```

## Modules

- `chainsync.models` holds the shared records and enums: `BlockHeader`,
  `TxRecord`, `TransactionType`, `TxStatus`, `AddressType`, `TokenType`,
  `NotifyTransaction`, `NotifyRequest` and `Eip1559DynamicFeeTx`.
  - `parse_transaction_type` and `parse_address_type` turn strings such as
    `"deposit"` or `"hot"` into enum members and raise `ValueError` for
    anything else.
  - `NotifyRequest.to_json()` and `Eip1559DynamicFeeTx.to_json()` give
    compact JSON with the wire field names.
- `chainsync.rpcclient` provides `WalletChainAccountClient`, which wraps a
  chain-account service stub. The stub has one method per call; each takes a
  request mapping and returns a response mapping.
  - The client reads block headers, block transactions, single transactions
    and account state, and sends raw transactions.
  - A response whose code is `ReturnCode.ERROR` raises `ChainAccountError`.
  - Two calls never raise: `export_address_by_pub_key` returns `""` on
    failure, and `get_account` returns `(0, 0, 0)`.
- `chainsync.batch_block` provides `BatchBlock`, which hands out headers once
  they are at least `confirmation_depth` blocks behind the chain head.
  - `next_headers(max_size)` returns at most `max_size` headers per call.
  - It raises `BatchBlockAheadOfProviderError` if its own position is ahead of
    the confirmed head.
- `chainsync.fees` prices transactions.
  - `parse_fast_fee` reads a `"base|tip|*multiplier"` quote into a `FeeInfo`.
  - `determine_token_type` returns `TokenType.ETH` for the `0x00` contract
    marker and `TokenType.ERC20` otherwise.
  - `gas_and_contract_info` gives a gas limit of 60 000 for native transfers
    and 120 000 for tokens.
- `chainsync.notifier` reports to business platforms.
  - `NotifyClient.business_notify` posts a `NotifyRequest` to
    `<base_url>/dapplink/notify` and raises `NotifyHTTPError` on HTTP status
    400 and above.
  - `Notifier` notifies every registered business on a timer, every 5 seconds
    by default. Before each post it stores `TxStatus.NOTIFIED`. Afterwards it
    stores `SUCCESS` or `WALLET_DONE`, with retries.
- `chainsync.services` provides `BusinessMiddlewareService`, which handles
  the business-facing calls:
  - registering businesses;
  - exporting addresses and opening balances from public keys;
  - creating unsigned EIP-1559 transactions;
  - combining a stored transaction with its signature;
  - storing token settings.

  Failures raise `ServiceError`.
- `chainsync.synchronizer` provides `BaseSynchronizer`, which ticks through
  new blocks and puts per-business `TransactionsChannel` batches on a queue.
  `CHANNEL_CLOSED` is put on the queue after the last batch.
  `classify_transaction` sets each transfer's type from the roles of its two
  addresses.
- `chainsync.deposit` provides `Deposit`, a synchronizer that also consumes
  its own batches. It stores deposits, balance changes, confirmation counts,
  withdrawal and internal statuses, and the transaction flow.
- `chainsync.senders` provides `Withdraw` and `Internal`, both built on
  `PendingSender`. They broadcast signed transactions that are waiting and
  record the hashes and locked balances.
- `chainsync.multichainsync` provides `MultiChainSync`, which starts and
  stops the deposit, withdraw and internal workers in that order.

## Example

```python
from chainsync.fees import parse_fast_fee

fee = parse_fast_fee("100|2|*3")
print(fee.multiplied_tip)    # 6
print(fee.max_priority_fee)  # 112 = 100 + 6 * 2
```

```python
from chainsync.synchronizer import classify_transaction
from chainsync.models import AddressType

classify_transaction(False, None, True, AddressType.EOA)              # TransactionType.DEPOSIT
classify_transaction(True, AddressType.HOT, True, AddressType.COLD)   # TransactionType.HOT2COLD
```

## What the package does not do

- It has no storage layer. The workers and the service take a `db` object
  from the caller. The tables and methods they call on it are listed in each
  class's docstring.
- It has no client of its own for the chain-account service. The stub passed
  to `WalletChainAccountClient` makes the actual calls.
- It does not serve the business API over the network. The
  `grpc_hostname` and `grpc_port` given to `BusinessMiddlewareService` are
  only stored.
- It has no command-line program and no configuration-file loading. The
  caller builds the objects and starts them.
- The only network traffic it makes itself is the notifier's HTTP posts.