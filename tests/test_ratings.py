"""
Rating tests for Flux
Rating the other party after completion, one rating per order and user, reputation reads
"""
import json

import pytest

from flux.errors import AlreadyRated, NotAuthorized, OrderNotRateable, ValidationError
from flux.services import delivery_codes, orders, ratings


@pytest.fixture
def complete_order(company, driver):
    """Factory: drive an accepted order through to completed"""
    def _complete(order, by_driver=driver):
        for delivery in order.deliveries:
            delivery_codes.validate(delivery.id, delivery.delivery_code, by_driver.id)
        orders.transition(order.id, 'driver_completed', by_driver.id)
        return orders.transition(order.id, 'completed', company.id)

    return _complete


@pytest.fixture
def completed_order(accepted_order, complete_order):
    return complete_order(accepted_order)


class TestRateOrder:
    """Test submitting ratings"""

    def test_parties_rate_each_other(self, client, company, driver, completed_order, auth_headers, fanout):
        response = client.post(f'/api/orders/{completed_order.id}/rating', headers=auth_headers(company),
                               json={'stars': 5, 'comment': '  Pontual e cuidadoso  '})

        assert response.status_code == 201
        rating = json.loads(response.data)['rating']
        assert rating['from_user_id'] == company.id
        assert rating['to_user_id'] == driver.id
        assert rating['stars'] == 5
        assert rating['comment'] == 'Pontual e cuidadoso'

        response = client.post(f'/api/orders/{completed_order.id}/rating', headers=auth_headers(driver),
                               json={'stars': 4})
        assert response.status_code == 201
        rating = json.loads(response.data)['rating']
        assert rating['to_user_id'] == company.id
        assert rating['comment'] is None

        received = fanout.of_kind('rating.received')
        assert [f.user_ids for f in received] == [[driver.id], [company.id]]

    def test_one_rating_per_order_and_user(self, client, company, completed_order, auth_headers):
        first = client.post(f'/api/orders/{completed_order.id}/rating', headers=auth_headers(company),
                            json={'stars': 5})
        second = client.post(f'/api/orders/{completed_order.id}/rating', headers=auth_headers(company),
                             json={'stars': 1})

        assert first.status_code == 201
        assert second.status_code == 409
        assert json.loads(second.data)['code'] == 'already_rated'
        assert ratings.get_order_rating(completed_order.id, company.id).stars == 5

    def test_only_completed_orders(self, company, driver, accepted_order, make_order):
        with pytest.raises(OrderNotRateable):
            ratings.rate_order(accepted_order.id, company.id, 5)

        orders.cancel(accepted_order.id, company.id)
        with pytest.raises(OrderNotRateable):
            ratings.rate_order(accepted_order.id, company.id, 5)

        pending = make_order(company)
        with pytest.raises(OrderNotRateable):
            ratings.rate_order(pending.id, company.id, 3)

    def test_outsiders_cannot_rate(self, client, completed_order, other_driver, make_user, auth_headers):
        response = client.post(f'/api/orders/{completed_order.id}/rating', headers=auth_headers(other_driver),
                               json={'stars': 1})
        assert response.status_code == 403

        with pytest.raises(NotAuthorized):
            ratings.rate_order(completed_order.id, make_user('company').id, 1)

    @pytest.mark.parametrize('stars', [0, 6, 4.5, '5', True, None])
    def test_invalid_stars(self, company, completed_order, stars):
        with pytest.raises(ValidationError):
            ratings.rate_order(completed_order.id, company.id, stars)

    def test_comment_length(self, client, company, completed_order, auth_headers):
        response = client.post(f'/api/orders/{completed_order.id}/rating', headers=auth_headers(company),
                               json={'stars': 3, 'comment': 'x' * 201})
        assert response.status_code == 400
        assert ratings.get_order_rating(completed_order.id, company.id) is None

    def test_missing_order(self, client, company, auth_headers):
        response = client.post('/api/orders/nope/rating', headers=auth_headers(company), json={'stars': 5})
        assert response.status_code == 404

    def test_rating_stored_only_once_at_service_level(self, company, completed_order):
        ratings.rate_order(completed_order.id, company.id, 2)
        with pytest.raises(AlreadyRated):
            ratings.rate_order(completed_order.id, company.id, 2)


class TestReadRatings:
    """Test the rating read interfaces"""

    def test_own_rating_on_order(self, client, company, completed_order, auth_headers):
        url = f'/api/orders/{completed_order.id}/rating'
        assert json.loads(client.get(url, headers=auth_headers(company)).data)['rating'] is None

        ratings.rate_order(completed_order.id, company.id, 4)

        rating = json.loads(client.get(url, headers=auth_headers(company)).data)['rating']
        assert rating['stars'] == 4

    def test_ratings_and_average(self, client, company, driver, make_user, make_order,
                                 completed_order, complete_order, auth_headers):
        other_company = make_user('company')
        ratings.rate_order(completed_order.id, company.id, 5)

        second = orders.accept_order(make_order(company).id, driver.id)
        complete_order(second)
        ratings.rate_order(second.id, company.id, 2)

        response = client.get(f'/api/users/{driver.id}/ratings', headers=auth_headers(other_company))

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['count'] == 2
        assert data['average'] == 3.5
        assert sorted(r['stars'] for r in data['ratings']) == [2, 5]

    def test_user_without_ratings(self, client, company, driver, auth_headers):
        data = json.loads(client.get(f'/api/users/{driver.id}/ratings', headers=auth_headers(company)).data)
        assert data == {'userId': driver.id, 'average': None, 'count': 0, 'ratings': []}

    def test_unknown_user(self, client, company, auth_headers):
        response = client.get('/api/users/ghost/ratings', headers=auth_headers(company))
        assert response.status_code == 404
        assert json.loads(response.data)['code'] == 'user_not_found'
