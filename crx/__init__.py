"""
CRX: Vehicle Import Brokerage Backend (v1.0.0)

Architecture:
  crx/
  ├── config/          Constants, roles, statuses, integration endpoints
  ├── db/              JSON document store (PostgreSQL optional), file storage
  ├── auth/            bcrypt, access/refresh JWT, blacklist, role guards
  ├── schemas/         Pydantic request bodies
  ├── users/           Accounts, balances, personal notifications
  ├── ledger/          Pure car money rules: buckets, payments, profit, bonus
  ├── cars/            Car inventory: create, query, update, transfer, delete
  ├── damages/         Damage claims crediting profit balances
  ├── prices/          Per-location prices with dealer-type columns
  ├── titles/          Title document types
  ├── imports/         .xlsx / .csv readers and title import
  ├── notifications/   Site-wide banner
  ├── invoices/        Numbered PDF invoices
  ├── bank/            Bank statement sync
  ├── password_reset/  Email reset tokens
  ├── scheduler/       Periodic jobs
  └── server.py        FastAPI routing layer

Domain modules take the loaded `db` dict and mutate it; the routing layer saves.
"""
