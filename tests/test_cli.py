import asyncio

from shopbot.cli import build_parser, refund_order
from shopbot.models import OrderStatus


def test_refund_command_success(settings, session_factory, make_order, load_order, capsys, mocker):
    order = make_order(status=OrderStatus.PAID, payment_intent_id="pi_cli")
    refund = mocker.Mock()
    refund.id = "re_cli"
    mocker.patch("stripe.Refund.create", return_value=refund)

    code = asyncio.run(refund_order(order.external_id, settings, session_factory))

    assert code == 0
    out = capsys.readouterr().out
    assert f"order #{order.id}" in out
    assert "Refund ID: re_cli" in out
    assert load_order(order.id).status == "refunded"


def test_refund_command_not_found(settings, session_factory, capsys):
    code = asyncio.run(refund_order("12345", settings, session_factory))

    assert code == 1
    assert "Order not found: 12345" in capsys.readouterr().err


def test_refund_command_failure(settings, session_factory, make_order, capsys, mocker):
    create = mocker.patch("stripe.Refund.create")
    order = make_order(status=OrderStatus.REFUNDED, payment_intent_id="pi_done")

    code = asyncio.run(refund_order(str(order.id), settings, session_factory))

    assert code == 1
    assert "Order already refunded" in capsys.readouterr().err
    create.assert_not_called()


def test_parser_requires_order_for_refund():
    args = build_parser().parse_args(["refund", "abc-123"])

    assert args.command == "refund"
    assert args.order == "abc-123"


def test_refund_command_store_error(settings, tmp_path, capsys):
    from sqlalchemy.pool import NullPool

    from shopbot.database import make_engine, make_sessionmaker

    # Database without the orders table
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", poolclass=NullPool)

    code = asyncio.run(refund_order("1", settings, make_sessionmaker(engine)))

    assert code == 1
    assert "Unexpected error" in capsys.readouterr().err


def test_refund_command_oversized_id(settings, session_factory, capsys):
    code = asyncio.run(refund_order("99999999999999999999", settings, session_factory))

    assert code == 1
    assert "Order not found: 99999999999999999999" in capsys.readouterr().err
