import logging
from dataclasses import dataclass
from functools import wraps

import click
from flask import Flask, current_app, jsonify, request
from flask.cli import with_appcontext
from flask_jwt_extended import JWTManager, create_access_token, get_jwt, get_jwt_identity, jwt_required
from werkzeug.security import check_password_hash

from accounts import AccountService
from config import Config
from errors import ExchangeError, InvalidInputError
from logging_config import configure_logging
from market import MarketService, coin_to_dict
from models import db
from portfolio import PortfolioStore
from trading import TradeCoordinator
from transaction_log import TransactionLog
from unit_of_work import UnitOfWork, make_session_factory
from withdrawals import WithdrawalWorkflow

logger = logging.getLogger(__name__)


@dataclass
class Exchange:
    """Core services shared by every request of one app instance."""

    uow: UnitOfWork
    accounts: AccountService
    market: MarketService
    portfolio: PortfolioStore
    trading: TradeCoordinator
    log: TransactionLog
    withdrawals: WithdrawalWorkflow

    @classmethod
    def build(cls, uow: UnitOfWork) -> "Exchange":
        portfolio = PortfolioStore()
        log = TransactionLog()
        return cls(
            uow=uow,
            accounts=AccountService(uow),
            market=MarketService(uow, portfolio),
            portfolio=portfolio,
            trading=TradeCoordinator(uow, portfolio, log),
            log=log,
            withdrawals=WithdrawalWorkflow(uow),
        )


def exchange() -> Exchange:
    return current_app.extensions["exchange"]


def current_user_id() -> int:
    return int(get_jwt_identity())


def admin_required(fn):
    @wraps(fn)
    @jwt_required()
    def wrapper(*args, **kwargs):
        if not get_jwt().get("is_admin"):
            return jsonify({"status": "error", "message": "Admin access required"}), 403
        return fn(*args, **kwargs)

    return wrapper


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return data


def int_field(data: dict, name: str) -> int:
    value = data.get(name)
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be an integer")


def register_routes(app: Flask):
    # 사용자 관리
    @app.route('/api/login', methods=['POST'])
    def login():
        data = json_body()
        username = data.get('username')
        phone = data.get('phone')
        password = data.get('password')
        if not username or not phone or not password:
            raise InvalidInputError("username, phone and password are required")

        user = exchange().accounts.find_for_login(username, phone)
        if not user or not check_password_hash(user.password, password):
            return jsonify({"status": "error", "message": "Invalid credentials"}), 401

        access_token = create_access_token(
            identity=str(user.id), additional_claims={"is_admin": bool(user.is_admin)}
        )
        return jsonify({"status": "success", "access_token": access_token}), 200

    @app.route('/api/user', methods=['GET'])
    @jwt_required()
    def get_user():
        user = exchange().accounts.get_user(current_user_id())
        return jsonify({
            "id": user.id,
            "username": user.username,
            "balance": user.balance,
            "is_admin": bool(user.is_admin),
        })

    # 자산 조회
    @app.route('/api/account', methods=['GET'])
    @jwt_required()
    def get_account():
        ex = exchange()
        with ex.uow.read() as session:
            overview = ex.portfolio.account_overview(session, current_user_id())
        return jsonify({
            "balance": overview.balance,
            "holdings": [h.to_dict() for h in overview.holdings],
            "total_value": overview.total_value,
        })

    # 코인 데이터
    @app.route('/api/coins', methods=['GET'])
    def get_coins():
        return jsonify([coin_to_dict(c) for c in exchange().market.list_coins()])

    @app.route('/api/coin/<int:coin_id>', methods=['GET'])
    @jwt_required()
    def get_coin(coin_id):
        return jsonify(exchange().market.coin_detail(coin_id, current_user_id()))

    @app.route('/api/ohlcv/<int:coin_id>', methods=['GET'])
    def get_ohlcv(coin_id):
        interval = request.args.get('interval', 'minute1')
        ex = exchange()
        with ex.uow.read() as session:
            bars = ex.log.ohlcv(session, coin_id, interval)
        return jsonify(bars)

    # 매수 / 매도
    @app.route('/api/buy-coin', methods=['POST'])
    @jwt_required()
    def buy():
        coin_id = int_field(json_body(), 'coinId')
        result = exchange().trading.buy(current_user_id(), coin_id)
        return jsonify({"status": "success", "message": "Coin bought", **result.to_dict()})

    @app.route('/api/sell-coin', methods=['POST'])
    @jwt_required()
    def sell():
        coin_id = int_field(json_body(), 'coinId')
        result = exchange().trading.sell(current_user_id(), coin_id)
        return jsonify({"status": "success", "message": "Coin sold", **result.to_dict()})

    # 거래 내역
    @app.route('/api/history', methods=['GET'])
    @jwt_required()
    def get_history():
        ex = exchange()
        with ex.uow.read() as session:
            history = ex.log.history(session, current_user_id())
        return jsonify([t.to_dict() for t in history])

    # 출금
    @app.route('/api/request-withdrawal', methods=['POST'])
    @jwt_required()
    def request_withdrawal():
        data = json_body()
        result = exchange().withdrawals.request(
            current_user_id(), data.get('amount'), data.get('iban')
        )
        return jsonify({
            "status": "success",
            "message": "Withdrawal requested",
            "newBalance": result.new_balance,
            "withdrawalId": result.withdrawal.id,
        })

    @app.route('/api/admin/withdrawals', methods=['GET'])
    @admin_required
    def get_pending_withdrawals():
        return jsonify([p.to_dict() for p in exchange().withdrawals.pending()])

    @app.route('/api/admin/approve-withdrawal/<int:withdrawal_id>', methods=['POST'])
    @admin_required
    def approve_withdrawal(withdrawal_id):
        exchange().withdrawals.approve(withdrawal_id)
        return jsonify({"status": "success", "message": "Withdrawal approved"})

    @app.route('/api/admin/reject-withdrawal/<int:withdrawal_id>', methods=['POST'])
    @admin_required
    def reject_withdrawal(withdrawal_id):
        result = exchange().withdrawals.reject(withdrawal_id)
        return jsonify({
            "status": "success",
            "message": "Withdrawal rejected and balance refunded",
            "refunded": result.refunded,
            "newBalance": result.new_balance,
        })

    @app.route('/api/admin/add-balance', methods=['POST'])
    @admin_required
    def add_balance():
        data = json_body()
        new_balance = exchange().accounts.add_balance(int_field(data, 'userId'), data.get('amount'))
        return jsonify({"status": "success", "message": "Balance added", "newBalance": new_balance})

    @app.route('/api/admin/remove-balance', methods=['POST'])
    @admin_required
    def remove_balance():
        data = json_body()
        new_balance = exchange().accounts.remove_balance(int_field(data, 'userId'), data.get('amount'))
        return jsonify({"status": "success", "message": "Balance removed", "newBalance": new_balance})

    @app.route('/api/admin/reset-prices', methods=['POST'])
    @admin_required
    def reset_prices():
        count = exchange().market.reset_prices()
        return jsonify({"status": "success", "message": "Prices reset", "coins": count})


def register_error_handlers(app: Flask):
    @app.errorhandler(ExchangeError)
    def handle_exchange_error(err):
        if err.status_code >= 500:
            logger.error("Request failed: %s", err.message, exc_info=err)
        return jsonify(err.to_dict()), err.status_code


@click.command('reset-prices')
@with_appcontext
def reset_prices_command():
    """Reset every coin's current price to its start price."""
    count = exchange().market.reset_prices()
    click.echo(f"Reset prices of {count} coins")


def create_app(overrides=None) -> Flask:
    configure_logging()

    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # 초기화
    db.init_app(app)
    JWTManager(app)

    # 데이터베이스 생성
    with app.app_context():
        db.create_all()
        session_factory = make_session_factory(db.engine)

    uow = UnitOfWork(session_factory, lock_timeout=app.config['LOCK_TIMEOUT_SECONDS'])
    app.extensions['exchange'] = Exchange.build(uow)

    register_routes(app)
    register_error_handlers(app)
    app.cli.add_command(reset_prices_command)
    return app


if __name__ == '__main__':
    create_app().run(debug=True)
