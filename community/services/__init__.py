# Services package.
#
# Each module exposes async functions that encapsulate business logic and
# database access for one aggregate:
#
#   user_service      signup, login (token issue), profile and password changes
#   post_service      post CRUD, paginated feed, ownership-checked mutations
#   comment_service   comment CRUD with ownership-checked mutations
#   like_service      like / unlike under the (user, post) uniqueness constraint
#
# All service functions accept an AsyncSession as their first argument so that
# the router layer controls the transaction boundary via ``get_db``.  Failures
# are raised as the typed errors in ``community.errors``; mutating operations
# check existence first, then ownership, then apply the change.
