# Overview: Pytest coverage for the HTTP API (auth, assets, orders, demos, audit, imports).

import io

from conftest import auth_headers, get_auth_token, TEST_PASSWORD


class TestAuthRoutes:
    def test_login_me_logout(self, client, user):
        token = get_auth_token(client, user.username, TEST_PASSWORD)
        assert token

        me = client.get('/api/auth/me', headers=auth_headers(token))
        assert me.status_code == 200
        assert me.json['user']['username'] == "clerk"

        out = client.post('/api/auth/logout', headers=auth_headers(token))
        assert out.status_code == 200

        again = client.get('/api/auth/me', headers=auth_headers(token))
        assert again.status_code == 401
        assert again.json['code'] == "UNAUTHENTICATED"

    def test_bad_password(self, client, user):
        response = client.post('/api/auth/login', json={'username': 'clerk', 'password': 'wrong'})
        assert response.status_code == 401

    def test_protected_route_needs_token(self, client, db_session):
        response = client.get('/api/assets')
        assert response.status_code == 401
        assert response.json['success'] is False


class TestSystemRoutes:
    def test_health(self, client, db_session):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.json['status'] == "healthy"

    def test_unknown_route_is_json(self, client, db_session):
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert response.json['success'] is False


class TestAssetRoutes:
    def test_stock_in_and_fetch(self, client, headers):
        created = client.post('/api/assets', json={
            'serial_number': 'SN-1', 'model': 'X200', 'date': '2024-01-15T09:00:00Z',
        }, headers=headers)
        assert created.status_code == 201
        assert created.json['asset']['status'] == "Active"

        fetched = client.get('/api/assets/sn-1', headers=headers)
        assert fetched.status_code == 200
        assert fetched.json['asset']['serial_number'] == "SN-1"

        status = client.get('/api/assets/SN-1/status', headers=headers)
        assert status.json['in_sync'] is True
        assert status.json['derived']['last_activity'] == "2024-01-15T09:00:00Z"

        history = client.get('/api/assets/SN-1/history', headers=headers)
        assert [h['type'] for h in history.json['history']] == ["Stock_In"]

    def test_stock_in_validation(self, client, headers):
        missing = client.post('/api/assets', json={'model': 'X'}, headers=headers)
        assert missing.status_code == 400
        assert missing.json['code'] == "VALIDATION_ERROR"

        forbidden = client.post('/api/assets', json={'serial_number': 'SN-1', 'status': 'Delivered'}, headers=headers)
        assert forbidden.status_code == 400

        bad_date = client.post('/api/assets', json={'serial_number': 'SN-1', 'date': 'yesterday-ish'}, headers=headers)
        assert bad_date.status_code == 400

    def test_duplicate_stock_in(self, client, headers):
        client.post('/api/assets', json={'serial_number': 'SN-1'}, headers=headers)
        dup = client.post('/api/assets', json={'serial_number': 'sn-1'}, headers=headers)
        assert dup.status_code == 400
        assert dup.json['details'] == {'serial_number': 'sn-1'}

    def test_update_with_stale_version(self, client, headers):
        client.post('/api/assets', json={'serial_number': 'SN-1'}, headers=headers)
        response = client.patch('/api/assets/SN-1', json={'model': 'New', 'version_id': 99}, headers=headers)
        assert response.status_code == 409
        assert response.json['code'] == "CONCURRENCY_CONFLICT"

        ok = client.patch('/api/assets/SN-1', json={'model': 'New', 'version_id': 1}, headers=headers)
        assert ok.status_code == 200
        assert ok.json['asset']['model'] == "New"

    def test_missing_asset(self, client, headers):
        response = client.get('/api/assets/NOPE', headers=headers)
        assert response.status_code == 404
        assert response.json['code'] == "NOT_FOUND"

    def test_purge(self, client, headers):
        client.post('/api/assets', json={'serial_number': 'SN-1'}, headers=headers)
        response = client.delete('/api/assets/SN-1', headers=headers)
        assert response.status_code == 200
        assert response.json['deleted_entries'] == 1


def _stock(client, headers, *serials):
    for serial in serials:
        response = client.post('/api/assets', json={'serial_number': serial}, headers=headers)
        assert response.status_code == 201


class TestOrderRoutes:
    def test_order_lifecycle(self, client, headers):
        _stock(client, headers, 'A', 'B')

        created = client.post('/api/orders', json={
            'order_number': 'SO-1',
            'serial_numbers': ['A', 'B'],
            'customer_dealer': 'Dealer One',
        }, headers=headers)
        assert created.status_code == 201
        order = created.json['order']
        assert len(order['items']) == 2
        assert len({i['entry_no'] for i in order['items']}) == 1

        for file_type in ('invoice', 'delivery_order', 'signed_delivery_order'):
            response = client.post('/api/orders/SO-1/documents', json={
                'file_type': file_type, 'file_id': f'{file_type}-1',
            }, headers=headers)
            assert response.status_code == 200
            assert response.json['transition'] is not None

        final = client.get('/api/orders/SO-1', headers=headers)
        assert final.json['order']['delivery_status'] == "Delivered"
        assert len(final.json['order']['items']) == 4

        files = client.get('/api/orders/SO-1/files', headers=headers)
        assert files.json['files']['signed_delivery_order']['present'] is True

        blocked = client.delete('/api/orders/SO-1', headers=headers)
        assert blocked.status_code == 400

        asset = client.get('/api/assets/A/status', headers=headers)
        assert asset.json['registry_status'] == "Delivered"
        assert asset.json['in_sync'] is True

    def test_unavailable_item_cites_serial(self, client, headers):
        _stock(client, headers, 'A')
        client.post('/api/orders', json={
            'order_number': 'SO-1', 'serial_numbers': ['A'], 'customer_dealer': 'Dealer',
        }, headers=headers)

        response = client.post('/api/orders', json={
            'order_number': 'SO-2', 'serial_numbers': ['A'], 'customer_dealer': 'Dealer',
        }, headers=headers)
        assert response.status_code == 400
        assert response.json['details']['serial_numbers'] == ['A']

    def test_queues_and_filters(self, client, headers):
        _stock(client, headers, 'A', 'B')
        for number, serial in (('SO-1', 'A'), ('SO-2', 'B')):
            client.post('/api/orders', json={
                'order_number': number, 'serial_numbers': [serial], 'customer_dealer': 'Dealer',
            }, headers=headers)
        client.post('/api/orders/SO-2/documents', json={'file_type': 'invoice', 'file_id': 'f'}, headers=headers)

        invoicing = client.get('/api/orders?queue=invoicing', headers=headers)
        assert [o['order_number'] for o in invoicing.json['orders']] == ['SO-1']

        delivery = client.get('/api/orders?queue=delivery', headers=headers)
        assert [o['order_number'] for o in delivery.json['orders']] == ['SO-2']

        bad = client.get('/api/orders?queue=archive', headers=headers)
        assert bad.status_code == 400

    def test_invoice_rename_and_delete(self, client, headers):
        _stock(client, headers, 'A')
        client.post('/api/orders', json={
            'order_number': 'SO-1', 'serial_numbers': ['A'], 'customer_dealer': 'Dealer',
        }, headers=headers)

        invoice = client.post('/api/orders/SO-1/invoice', json={
            'invoice_number': 'INV-1', 'invoice_date': '2024-04-01',
        }, headers=headers)
        assert invoice.status_code == 200
        assert invoice.json['partial_success'] is False

        renamed = client.post('/api/orders/SO-1/rename', json={'new_order_number': 'SO-1B'}, headers=headers)
        assert renamed.json['order']['order_number'] == 'SO-1B'

        deleted = client.delete('/api/orders/SO-1B', headers=headers)
        assert deleted.status_code == 200
        assert deleted.json['restored_serials'] == ['A']

        asset = client.get('/api/assets/A', headers=headers)
        assert asset.json['asset']['status'] == "Active"

    def test_cancel_order(self, client, headers):
        _stock(client, headers, 'A')
        client.post('/api/orders', json={
            'order_number': 'SO-1', 'serial_numbers': ['A'], 'customer_dealer': 'Dealer',
        }, headers=headers)

        cancellable = client.get('/api/orders?queue=cancellable', headers=headers)
        assert [o['order_number'] for o in cancellable.json['orders']] == ['SO-1']

        no_reason = client.post('/api/orders/SO-1/cancel', json={}, headers=headers)
        assert no_reason.status_code == 400

        cancelled = client.post('/api/orders/SO-1/cancel', json={'reason': 'Customer withdrew'}, headers=headers)
        assert cancelled.status_code == 200
        assert cancelled.json['order']['order_status'] == "Cancelled"
        assert cancelled.json['order']['original_invoice_status'] == "Reserved"
        assert cancelled.json['cancelled_items'] == ['A']

        listed = client.get('/api/orders?order_status=Cancelled', headers=headers)
        assert listed.json['count'] == 1

        again = client.post('/api/orders/SO-1/cancel', json={'reason': 'Again'}, headers=headers)
        assert again.status_code == 400

        asset = client.get('/api/assets/A/status', headers=headers)
        assert asset.json['registry_status'] == "Active"
        assert asset.json['in_sync'] is True


class TestDemoRoutes:
    def test_demo_partial_then_full_return(self, client, headers):
        _stock(client, headers, 'D1', 'D2')
        created = client.post('/api/demos', json={
            'demo_number': 'DM-1', 'serial_numbers': ['D1', 'D2'], 'customer_dealer': 'Dealer',
        }, headers=headers)
        assert created.status_code == 201

        partial = client.post('/api/demos/DM-1/return', json={'serial_numbers': ['D1']}, headers=headers)
        assert partial.json['demo']['partially_returned'] is True
        assert partial.json['demo']['items_remaining_count'] == 1

        stats = client.get('/api/demos/statistics', headers=headers)
        assert stats.json['active_demo_items'] == 1

        done = client.post('/api/demos/DM-1/return-all', json={}, headers=headers)
        assert done.json['demo']['status'] == "Returned"

        items = client.get('/api/demos/DM-1/items', headers=headers)
        assert all(i['returned'] for i in items.json['items'])

    def test_missing_demo(self, client, headers):
        response = client.get('/api/demos/NOPE', headers=headers)
        assert response.status_code == 404


class TestAuditAndImportRoutes:
    def test_discrepancies_and_sequences(self, client, headers):
        _stock(client, headers, 'A')

        report = client.get('/api/audit/discrepancies', headers=headers)
        assert report.json['report']['clean'] is True

        summary = client.get('/api/audit/inventory-summary', headers=headers)
        assert summary.json['by_status']['Active'] == 1

        sequences = client.get('/api/audit/sequences', headers=headers)
        by_name = {s['name']: s for s in sequences.json['sequences']}
        assert by_name['transaction_id']['current'] == 1

        resync = client.post('/api/audit/sequences/resync', headers=headers)
        assert resync.status_code == 200

        reconcile = client.post('/api/audit/reconcile', json={}, headers=headers)
        assert reconcile.json['count'] == 0

    def test_import_json_rows(self, client, headers):
        response = client.post('/api/imports/inventory', json={'rows': [
            {'serial_number': 'IMP-1'},
            {'serial_number': ''},
        ]}, headers=headers)
        assert response.status_code == 201
        assert response.json['imported'] == 1
        assert response.json['skipped'][0]['row'] == 2

    def test_import_csv_upload(self, client, headers):
        data = {'file': (io.BytesIO(b"serial_number,model\nCSV-1,M1\n"), 'stock.csv')}
        response = client.post(
            '/api/imports/inventory', data=data, headers=headers, content_type='multipart/form-data',
        )
        assert response.status_code == 201
        assert response.json['serial_numbers'] == ['CSV-1']

    def test_import_rejects_unknown_format(self, client, headers):
        data = {'file': (io.BytesIO(b"x"), 'stock.pdf')}
        response = client.post(
            '/api/imports/inventory', data=data, headers=headers, content_type='multipart/form-data',
        )
        assert response.status_code == 400

    def test_import_nothing_new_is_200(self, client, headers):
        _stock(client, headers, 'A')
        response = client.post('/api/imports/inventory', json={'rows': [{'serial_number': 'a'}]}, headers=headers)
        assert response.status_code == 200
        assert response.json['imported'] == 0
