"""
Acceptance guard tests for Flux
Single winner per order, one open order per driver, best-effort code generation
"""
import json
import threading

import pytest
from sqlalchemy import false, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from flux import db
from flux.errors import AccessExpired, Conflict, DriverBusy, NotAuthorized, OrderNotFound, OrderUnavailable
from flux.models import Order, OrderDelivery, utcnow
from flux.services import delivery_codes, orders


def _race(app, targets):
    """Run accept_order for each (order_id, driver_id) pair on its own thread and app context"""
    barrier = threading.Barrier(len(targets))
    results = [None] * len(targets)

    def worker(index, order_id, driver_id):
        with app.app_context():
            barrier.wait()
            try:
                orders.accept_order(order_id, driver_id)
                results[index] = 'won'
            except (OrderUnavailable, DriverBusy) as e:
                results[index] = e.code
            finally:
                db.session.remove()

    threads = [
        threading.Thread(target=worker, args=(i, order_id, driver_id))
        for i, (order_id, driver_id) in enumerate(targets)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


class TestAcceptOrder:
    """Test acceptance by a single driver"""

    def test_accept_pending_order(self, client, company, driver, make_order, auth_headers, fanout):
        """Test a driver accepting an available order"""
        order = make_order(company, deliveries=2)

        response = client.post(f'/api/orders/{order.id}/accept', headers=auth_headers(driver))

        assert response.status_code == 200
        data = json.loads(response.data)['order']
        assert data['status'] == 'accepted'
        assert data['driver_user_id'] == driver.id
        assert data['accepted_at'] is not None
        assert all(d['has_code'] for d in data['deliveries'])
        assert fanout.kinds()[-2:] == ['order.accepted', 'order.codes_ready']
        assert fanout.of_kind('order.codes_ready')[0].payload['generated'] == 2

    def test_second_driver_gets_unavailable(self, client, company, driver, other_driver, make_order, auth_headers):
        order = make_order(company)
        orders.accept_order(order.id, driver.id)

        response = client.post(f'/api/orders/{order.id}/accept', headers=auth_headers(other_driver))

        assert response.status_code == 409
        data = json.loads(response.data)
        assert data['code'] == 'order_unavailable'
        assert db.session.get(Order, order.id).driver_user_id == driver.id

    def test_driver_with_open_order_is_busy(self, client, company, driver, make_order, auth_headers):
        first = make_order(company)
        second = make_order(company)
        orders.accept_order(first.id, driver.id)

        response = client.post(f'/api/orders/{second.id}/accept', headers=auth_headers(driver))

        assert response.status_code == 409
        assert json.loads(response.data)['code'] == 'driver_busy'
        assert db.session.get(Order, second.id).status == 'pending'

    def test_driver_free_again_after_finishing(self, company, driver, make_order):
        first = make_order(company, deliveries=1)
        second = make_order(company)
        accepted = orders.accept_order(first.id, driver.id)
        delivery = accepted.deliveries[0]
        delivery_codes.validate(delivery.id, delivery.delivery_code, driver.id)
        orders.transition(first.id, 'driver_completed', driver.id)

        assert orders.accept_order(second.id, driver.id).status == 'accepted'

    def test_cancelled_order_unavailable(self, company, driver, make_order):
        order = make_order(company)
        orders.cancel(order.id, company.id)
        with pytest.raises(OrderUnavailable):
            orders.accept_order(order.id, driver.id)

    def test_missing_order(self, driver):
        with pytest.raises(OrderNotFound):
            orders.accept_order('missing-order', driver.id)

    def test_expired_driver_cannot_accept(self, company, make_user, give_credits, make_order):
        order = make_order(company)
        expired = make_user('driver')
        give_credits(expired, days=-3)

        with pytest.raises(AccessExpired):
            orders.accept_order(order.id, expired.id)
        assert db.session.get(Order, order.id).status == 'pending'

    def test_company_cannot_accept(self, client, company, make_order, auth_headers):
        order = make_order(company)
        response = client.post(f'/api/orders/{order.id}/accept', headers=auth_headers(company))
        assert response.status_code == 403

    def test_only_drivers_accept_via_service(self, company, make_order, admin):
        order = make_order(company)
        with pytest.raises(NotAuthorized):
            orders.accept_order(order.id, admin.id)


class TestOpenOrderIndex:
    """Test the storage-level one-open-order-per-driver rule"""

    def test_partial_unique_index_rejects_second_open_order(self, company, driver, make_order):
        first = make_order(company)
        second = make_order(company)
        orders.accept_order(first.id, driver.id)

        with pytest.raises(IntegrityError):
            db.session.execute(
                update(Order)
                .where(Order.id == second.id)
                .values(status='accepted', driver_user_id=driver.id, accepted_at=utcnow())
            )
            db.session.flush()
            db.session.commit()
        db.session.rollback()

    def test_index_violation_reported_as_busy(self, company, driver, make_order, monkeypatch):
        """Test the IntegrityError path when the NOT EXISTS check is raced past"""
        first = make_order(company)
        second = make_order(company)
        orders.accept_order(first.id, driver.id)

        # Simulate a concurrent acceptance the NOT EXISTS predicate did not see
        monkeypatch.setattr(orders, '_driver_has_open_order', lambda driver_id: select(Order.id).where(false()).exists())

        with pytest.raises(DriverBusy):
            orders.accept_order(second.id, driver.id)
        assert db.session.get(Order, second.id).status == 'pending'


class TestAcceptanceRaces:
    """Test concurrent acceptance with real threads"""

    def test_single_winner_among_concurrent_drivers(self, app, company, make_order, make_user, give_credits):
        order = make_order(company, deliveries=1)
        drivers = []
        for _ in range(6):
            d = make_user('driver')
            give_credits(d)
            drivers.append(d.id)

        results = _race(app, [(order.id, driver_id) for driver_id in drivers])

        assert results.count('won') == 1
        assert results.count('order_unavailable') == len(drivers) - 1
        final = db.session.execute(
            select(Order).where(Order.id == order.id).execution_options(populate_existing=True)
        ).scalar_one()
        assert final.status == 'accepted'
        assert final.driver_user_id == drivers[results.index('won')]

    def test_one_driver_racing_for_two_orders(self, app, company, driver, make_order):
        first = make_order(company, deliveries=1)
        second = make_order(company, deliveries=1)

        results = _race(app, [(first.id, driver.id), (second.id, driver.id)])

        assert sorted(results) == ['driver_busy', 'won']
        open_orders = db.session.execute(
            select(Order).where(Order.driver_user_id == driver.id, Order.status == 'accepted')
        ).scalars().all()
        assert len(open_orders) == 1


class TestCodeGenerationOnAccept:
    """Test that code generation is best-effort and repeatable"""

    def test_generation_failure_keeps_acceptance(self, company, driver, make_order, monkeypatch):
        order = make_order(company, deliveries=2)
        calls = []

        def failing_issue(delivery_id):
            calls.append(delivery_id)
            raise OperationalError('UPDATE order_deliveries', {}, Exception('database is locked'))

        monkeypatch.setattr(delivery_codes, 'issue_code', failing_issue)
        accepted = orders.accept_order(order.id, driver.id)

        assert accepted.status == 'accepted'
        assert accepted.driver_user_id == driver.id
        assert not any(d.code_hash for d in accepted.deliveries)
        # Each delivery retried CODE_GENERATION_RETRIES times
        assert len(calls) == 2 * 3

        monkeypatch.undo()
        summary = orders.ensure_delivery_codes(order.id, driver.id)
        assert summary['generated'] == 2

    def test_ensure_codes_is_idempotent(self, client, accepted_order, company, auth_headers):
        before = {
            d.id: d.code_hash for d in db.session.execute(
                select(OrderDelivery).where(OrderDelivery.order_id == accepted_order.id)
            ).scalars()
        }

        response = client.post(f'/api/orders/{accepted_order.id}/codes', headers=auth_headers(company))

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['generated'] == 0
        assert data['existing'] == 2
        after = {
            d.id: d.code_hash for d in db.session.execute(
                select(OrderDelivery).where(OrderDelivery.order_id == accepted_order.id)
                .execution_options(populate_existing=True)
            ).scalars()
        }
        assert after == before

    def test_ensure_codes_rejects_pending(self, company, make_order):
        order = make_order(company)
        with pytest.raises(Conflict):
            orders.ensure_delivery_codes(order.id, company.id)
