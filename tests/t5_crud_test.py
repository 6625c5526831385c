import json
import unittest
from urllib.parse import quote

from flask import Flask

from restsql import RestHandlers, CrudHelper
from restsql.exc import InvalidColumnError, InvalidQueryError
from restsql.plugin import parse_query_args

from . import models


class CrudTestBase(unittest.TestCase):
    """ A Flask app with REST handlers, on a fresh database """

    #: Options for RestHandlers
    OPTIONS = {}

    def setUp(self):
        # Init db
        self.engine, self.Session, self.db_path = models.get_working_db_for_tests()

        # Flask
        self.app = app = Flask(__name__)
        app.testing = True

        self.rest = RestHandlers(app,
                                 session_factory=self.Session,
                                 base=models.Base,
                                 credentials=lambda: 'kevin',
                                 options=self.OPTIONS)
        self.rest.route(app, '/v1')

        self.client = app.test_client()

    def tearDown(self):
        self.rest.shutdown()
        models.drop_db(self.engine, self.db_path)

    def get(self, path, **query):
        """ GET, with JSON-encoded query parameters """
        query = {k: v if isinstance(v, (str, int)) else json.dumps(v)
                 for k, v in query.items()}
        return self.client.get(path, query_string=query)

    def assertError(self, rv, status, error):
        self.assertEqual(rv.status_code, status, rv.get_data(as_text=True))
        self.assertEqual(rv.get_json()['error'], error)
        self.assertIn('message', rv.get_json())


class CrudFindTest(CrudTestBase):
    """ Test finding: lists, single objects, pagination, deep population """

    OPTIONS = dict(where=True)

    def test_list(self):
        rv = self.get('/v1/admins')
        self.assertEqual(rv.status_code, 200)
        res = rv.get_json()
        self.assertEqual(len(res['Admin']), 20)
        self.assertEqual(res['meta'], {'totalPages': 1, 'totalDocs': 20})

    def test_where(self):
        res = self.get('/v1/admins', where={'age': {'$gte': 17}}).get_json()
        self.assertEqual(len(res['Admin']), 13)
        self.assertEqual(res['meta'], {'totalPages': 1, 'totalDocs': 13})
        self.assertTrue(all(a['age'] >= 17 for a in res['Admin']))

        # Nothing found: an empty list
        rv = self.get('/v1/admins', where={'age': {'$gt': 100}})
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_json(), {'Admin': [], 'meta': {'totalPages': 1, 'totalDocs': 0}})

        # Bracket notation, with arrays
        rv = self.client.get('/v1/admins?where[age][$in][]=17&where[age][$in][]=18')
        self.assertEqual(rv.status_code, 200, rv.get_data(as_text=True))
        self.assertEqual(sorted(a['age'] for a in rv.get_json()['Admin']), [17, 18])

        # Invalid
        rv = self.get('/v1/admins', where={'nope': 1})
        self.assertError(rv, 400, 'InvalidColumnError')
        rv = self.client.get('/v1/admins?where={bad')
        self.assertError(rv, 400, 'InvalidQueryError')

    def test_pagination(self):
        res = self.get('/v1/admins', limit=10, page=1).get_json()
        self.assertEqual(len(res['Admin']), 10)
        self.assertEqual(res['meta'], {'totalPages': 2, 'totalDocs': 20})

        res = self.get('/v1/admins', limit=10, page=2, sort='-age').get_json()
        self.assertEqual([a['age'] for a in res['Admin']], list(range(19, 9, -1)))

        # Page alone: the default limit, 30
        res = self.get('/v1/admins', page=1).get_json()
        self.assertEqual(len(res['Admin']), 20)
        self.assertEqual(res['meta'], {'totalPages': 1, 'totalDocs': 20})

        # Invalid
        self.assertError(self.get('/v1/admins', page=0), 400, 'InvalidQueryError')
        self.assertError(self.get('/v1/admins', limit='ten'), 400, 'InvalidQueryError')

    def test_sort_array_syntax(self):
        rv = self.client.get('/v1/admins?sort[]=-age&sort[]=name&limit=2')
        self.assertEqual([a['age'] for a in rv.get_json()['Admin']], [29, 28])

    def test_search(self):
        res = self.get('/v1/admins', search='10').get_json()
        self.assertEqual([a['name'] for a in res['Admin']], ['Administrator 10'])
        self.assertEqual(res['meta']['totalDocs'], 1)

        self.assertError(self.get('/v1/admins', search='('), 400, 'InvalidQueryError')

    def test_select(self):
        res = self.get('/v1/admins', select='name', limit=1, sort='id').get_json()
        self.assertEqual(res['Admin'], [{'id': 1, 'name': 'Administrator 0'}])

    def test_single(self):
        rv = self.get('/v1/admins/3', populate='user')
        self.assertEqual(rv.status_code, 200)
        res = rv.get_json()
        self.assertEqual(set(res), {'Admin'})  # no pagination metadata
        self.assertEqual(res['Admin']['name'], 'Administrator 2')
        self.assertEqual(res['Admin']['user']['username'], 'user-2')

        # Not found
        self.assertError(self.get('/v1/admins/500'), 404, 'NotFound')

        # Malformed id
        self.assertError(self.get('/v1/admins/abc'), 400, 'InvalidQueryError')
        self.assertError(self.get('/v1/admins/99999999999999999999999'), 400, 'InvalidQueryError')
        self.assertError(self.client.delete('/v1/admins/-99999999999999999999999'), 400, 'InvalidQueryError')

    def test_unknown_model(self):
        self.assertError(self.get('/v1/unicorns'), 404, 'NotFound')
        self.assertError(self.client.post('/v1/unicorns', json={}), 404, 'NotFound')

    def test_unknown_parameter(self):
        self.assertError(self.get('/v1/admins', color='red'), 400, 'InvalidQueryError')

    def test_deep_populate(self):
        res = self.get('/v1/admins', populate='user', sort='age', limit=3,
                       deepPopulate=[{'modelName': 'Role', 'populate': 'user.role'}]).get_json()
        self.assertEqual([a['user']['role']['name'] for a in res['Admin']], ['root', 'editor', 'viewer'])

        # Bracket notation
        rv = self.client.get('/v1/admins/1?populate=user'
                             '&deepPopulate[0][modelName]=Role&deepPopulate[0][populate]=user.role')
        self.assertEqual(rv.get_json()['Admin']['user']['role'], {'id': 1, 'name': 'root'})

        # populate of a step: an array, an object
        for populate in (['user.role'], {'path': 'user.role'}):
            rv = self.get('/v1/admins', populate='user', sort='age', limit=2,
                          deepPopulate=[{'modelName': 'Role', 'populate': populate}])
            self.assertEqual(rv.status_code, 200, rv.get_data(as_text=True))
            self.assertEqual([a['user']['role']['name'] for a in rv.get_json()['Admin']], ['root', 'editor'])

        # deepPopulate requires populate
        rv = self.get('/v1/admins', deepPopulate=[{'modelName': 'Role', 'populate': 'user.role'}])
        self.assertError(rv, 400, 'InvalidQueryError')

        # Invalid
        rv = self.get('/v1/admins', populate='user', deepPopulate=[{'modelName': 'Unicorn', 'populate': 'user.role'}])
        self.assertError(rv, 400, 'InvalidQueryError')
        rv = self.get('/v1/admins', populate='user', deepPopulate=[{'modelName': 'Role', 'populate': 'user.nope'}])
        self.assertError(rv, 400, 'InvalidRelationError')
        rv = self.get('/v1/admins', populate='user', deepPopulate=[{'modelName': 'Role'}])
        self.assertError(rv, 400, 'InvalidQueryError')

    def test_conditions(self):
        """ Base conditions are applied to every request on the route """
        self.rest.route(self.app, '/young', conditions={'age': {'$lt': 12}}, name='young')

        res = self.get('/young/admins').get_json()
        self.assertEqual({a['age'] for a in res['Admin']}, {10, 11})
        self.assertEqual(res['meta']['totalDocs'], 2)

        # Combined with `where`
        res = self.get('/young/admins', where={'age': 11}).get_json()
        self.assertEqual([a['age'] for a in res['Admin']], [11])

        # An object outside of the conditions is not found
        self.assertError(self.get('/young/admins/15'), 404, 'NotFound')
        self.assertError(self.client.delete('/young/admins/15'), 404, 'NotFound')


class CrudWhereDisabledTest(CrudTestBase):
    """ `where` is disabled by default """

    def test_where_ignored(self):
        res = self.get('/v1/admins', where={'age': {'$gte': 17}}).get_json()
        self.assertEqual(len(res['Admin']), 20)

        # Even if it's invalid
        res = self.get('/v1/admins', where={'nope': 1}).get_json()
        self.assertEqual(len(res['Admin']), 20)


class CrudPaginationSettingsTest(CrudTestBase):
    """ Custom pagination settings """

    OPTIONS = dict(pagination={'meta': 'pages', 'total_docs': 'count', 'default_limit': 5})

    def test_pagination(self):
        res = self.get('/v1/admins', page=2).get_json()
        self.assertEqual(len(res['Admin']), 5)
        self.assertEqual(res['pages'], {'totalPages': 4, 'count': 20})
        self.assertNotIn('meta', res)


class CrudMutationsTest(CrudTestBase):
    """ Create, update, remove: responding with the object """

    OPTIONS = dict(on_create='object', on_update='object', on_remove='object')

    def test_create(self):
        # Namespaced payload
        rv = self.client.post('/v1/users', json={'user': {'username': 'bob', 'role_id': 2}})
        self.assertEqual(rv.status_code, 200, rv.get_data(as_text=True))
        self.assertEqual(rv.get_json(), {'User': {
            'id': 21,
            'username': 'bob',
            'status': 'active',
            'role_id': 2,
            'prefs': None,
            'updated_by': 'kevin',  # touch()ed
        }})

        # Plain payload; a writable property
        rv = self.client.post('/v1/users', json={'handle': '@alice'})
        self.assertEqual(rv.get_json()['User']['username'], 'alice')

        # It's in the database
        res = self.get('/v1/users', sort='-id', limit=2).get_json()
        self.assertEqual([u['username'] for u in res['User']], ['alice', 'bob'])
        self.assertEqual(res['meta']['totalDocs'], 22)

        # A model without touch()
        rv = self.client.post('/v1/admins', json={'name': 'Newbie', 'age': 99})
        self.assertEqual(rv.get_json()['Admin']['name'], 'Newbie')

    def test_create_invalid(self):
        # Unknown column
        self.assertError(self.client.post('/v1/users', json={'nope': 1}), 400, 'InvalidColumnError')
        # Relationships are not writable
        self.assertError(self.client.post('/v1/users', json={'role': {'name': 'x'}}), 400, 'InvalidColumnError')
        # Read-only properties are not writable
        self.assertError(self.client.post('/v1/users', json={'is_banned': True}), 400, 'InvalidColumnError')
        # Not an object
        self.assertError(self.client.post('/v1/users', json=[1, 2]), 400, 'InvalidQueryError')
        self.assertError(self.client.post('/v1/users'), 400, 'InvalidQueryError')
        # Query parameters are not accepted
        self.assertError(self.client.post('/v1/users?limit=1', json={'username': 'x'}), 400, 'InvalidQueryError')

        # Nothing was created
        self.assertEqual(self.get('/v1/users').get_json()['meta']['totalDocs'], 20)

    def test_create_store_failure(self):
        # Duplicate primary key
        rv = self.client.post('/v1/users', json={'id': 1, 'username': 'dup'})
        self.assertError(rv, 500, 'DatabaseError')

        # Still works
        rv = self.client.post('/v1/users', json={'username': 'ok'})
        self.assertEqual(rv.status_code, 200)

    def test_update(self):
        rv = self.client.post('/v1/users/1', json={'user': {'prefs': {'theme': 'light'}}})
        self.assertEqual(rv.status_code, 200, rv.get_data(as_text=True))
        user = rv.get_json()['User']

        # JSON: merged
        self.assertEqual(user['prefs'], {'theme': 'light', 'lang': 'en'})
        # Everything else is intact
        self.assertEqual(user['username'], 'user-0')
        self.assertEqual(user['updated_by'], 'kevin')

        # PATCH, PUT
        rv = self.client.patch('/v1/users/2', json={'username': 'patched'})
        self.assertEqual(rv.get_json()['User']['username'], 'patched')
        rv = self.client.put('/v1/users/2', json={'status': 'banned'})
        self.assertEqual(rv.get_json()['User'], {
            'id': 2, 'username': 'patched', 'status': 'banned', 'role_id': 2,
            'prefs': {'theme': 'dark', 'lang': 'en'}, 'updated_by': 'kevin',
        })

        # Persisted
        res = self.get('/v1/users/2').get_json()
        self.assertEqual(res['User']['status'], 'banned')

    def test_update_invalid(self):
        self.assertError(self.client.post('/v1/users/500', json={'username': 'x'}), 404, 'NotFound')
        self.assertError(self.client.post('/v1/users/abc', json={'username': 'x'}), 400, 'InvalidQueryError')
        self.assertError(self.client.post('/v1/users/1', json={'nope': 'x'}), 400, 'InvalidColumnError')
        self.assertError(self.client.post('/v1/users/1', json='x'), 400, 'InvalidQueryError')

    def test_remove(self):
        rv = self.client.delete('/v1/admins/1')
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_json(), {'Admin': {'id': 1, 'name': 'Administrator 0', 'age': 10, 'user_id': 1}})

        self.assertError(self.get('/v1/admins/1'), 404, 'NotFound')
        self.assertError(self.client.delete('/v1/admins/1'), 404, 'NotFound')
        self.assertEqual(self.get('/v1/admins').get_json()['meta']['totalDocs'], 19)


class CrudNoContentTest(CrudTestBase):
    """ Create, update, remove: responding with nothing, by default """

    def test_mutations(self):
        rv = self.client.post('/v1/users', json={'username': 'bob'})
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_data(), b'')

        rv = self.client.post('/v1/users/21', json={'username': 'rob'})
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_data(), b'')
        self.assertEqual(self.get('/v1/users/21').get_json()['User']['username'], 'rob')

        rv = self.client.delete('/v1/users/21')
        self.assertEqual(rv.status_code, 200)
        self.assertEqual(rv.get_data(), b'')
        self.assertError(self.get('/v1/users/21'), 404, 'NotFound')


class CrudOverridesTest(CrudTestBase):
    """ Overrides: replace a handler, or patch its defaults """

    OPTIONS = dict(
        # Replace
        remove=lambda settings, executor: lambda request: {'removed': False, 'model': request.model.__name__},
        # Patch
        find={'validate': {'query': {'color': str}}},
    )

    def test_replace(self):
        rv = self.client.delete('/v1/admins/1')
        self.assertEqual(rv.get_json(), {'removed': False, 'model': 'Admin'})

        # Nothing was removed
        self.assertEqual(self.get('/v1/admins/1').status_code, 200)

    def test_patch(self):
        # An additional parameter is accepted; the rest still work
        res = self.get('/v1/admins', color='red', limit=2).get_json()
        self.assertEqual(len(res['Admin']), 2)
        self.assertError(self.get('/v1/admins', shape='round'), 400, 'InvalidQueryError')


class CrudHelperTest(unittest.TestCase):
    """ Test CrudHelper without the web layer """

    @classmethod
    def setUpClass(cls):
        cls.engine, cls.Session, cls.db_path = models.get_working_db_for_tests()

    @classmethod
    def tearDownClass(cls):
        models.drop_db(cls.engine, cls.db_path)

    def test_helper(self):
        helper = CrudHelper.for_model(models.User)
        self.assertIs(helper, CrudHelper.for_model(models.User))
        self.assertIsNot(helper, CrudHelper.for_model(models.User, where=True))

        self.assertEqual(helper.name, 'User')
        self.assertEqual(helper.payload_key, 'user')
        self.assertEqual(helper.get_payload({'user': {'a': 1}}), {'a': 1})
        self.assertEqual(helper.get_payload({'a': 1}), {'a': 1})

        # Create
        user = helper.create_model({'username': 'x', 'handle': '@y'})
        self.assertEqual(user.username, 'y')
        self.assertTrue(helper.touch(user, 'me'))
        self.assertEqual(user.updated_by, 'me')
        self.assertFalse(helper.touch(models.Admin(), 'me'))

        self.assertRaises(InvalidColumnError, helper.create_model, {'admins': []})
        self.assertRaises(InvalidQueryError, helper.create_model, 'x')

        # Query
        rq = helper.query_model({'limit': 2, 'deepPopulate': [], 'color': 'red'})
        self.assertEqual(rq.limit, 2)

        # Get, update
        with self.Session() as ssn:
            user = helper.get_instance(ssn, '1')
            helper.update_model({'prefs': {'lang': 'de'}, 'username': 'z'}, user)
            self.assertEqual(user.prefs, {'theme': 'dark', 'lang': 'de'})
            self.assertEqual(user.username, 'z')
            self.assertEqual(user.status, 'active')
            ssn.rollback()


class ParseQueryArgsTest(unittest.TestCase):
    """ Test parse_query_args() """

    def _parse(self, qs):
        app = Flask(__name__)
        with app.test_request_context('/?' + qs):
            from flask import request
            return parse_query_args(request.args)

    def test_parse(self):
        self.assertEqual(self._parse('page=2&limit=10'), {'page': '2', 'limit': '10'})
        self.assertEqual(self._parse('sort[]=a&sort[]=-b'), {'sort': ['a', '-b']})
        self.assertEqual(self._parse('where[age]=1'), {'where': {'age': '1'}})
        self.assertEqual(self._parse('where[age][$in][]=17&where[age][$in][]=18'),
                         {'where': {'age': {'$in': ['17', '18']}}})
        self.assertEqual(self._parse('where[$or][0][age]=1&where[$or][1][name][$in][]=a'),
                         {'where': {'$or': [{'age': '1'}, {'name': {'$in': ['a']}}]}})
        self.assertRaises(InvalidQueryError, self._parse, 'where=x&where[age]=1')
        self.assertEqual(self._parse('deepPopulate[0][modelName]=Role&deepPopulate[0][populate]=user.role'),
                         {'deepPopulate': [{'modelName': 'Role', 'populate': 'user.role'}]})
        self.assertEqual(self._parse('where=' + quote('{"age": 1}')), {'where': {'age': 1}})
        self.assertEqual(self._parse('deepPopulate[]=' + quote('{"modelName": "Role", "populate": "user.role"}')),
                         {'deepPopulate': [{'modelName': 'Role', 'populate': 'user.role'}]})
        self.assertEqual(self._parse('sort=-age'), {'sort': '-age'})
        self.assertEqual(self._parse('search={x'), {'search': '{x'})  # not JSON-decoded
        self.assertRaises(InvalidQueryError, self._parse, 'where={x')
