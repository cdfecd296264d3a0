"""Schema v1 - Initial database schema.

This version includes tables for:
- NFT listing state, one row per mint
- User profiles used to address email notifications
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'nfts',
            'columns': [
                {'name': 'mint_address', 'type': 'TEXT', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'full_name', 'type': 'TEXT'},
                {'name': 'collection_slug', 'type': 'TEXT', 'nullable': False, 'default': "'unknown'"},
                {'name': 'owner', 'type': 'TEXT'},
                {'name': 'image', 'type': 'TEXT'},
                {'name': 'attributes', 'type': 'JSONB'},
                {'name': 'is_listed', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'price_lamports', 'type': 'INT8'},
                {'name': 'price_sol', 'type': 'DECIMAL'},
                {'name': 'price_usdc', 'type': 'DECIMAL'},
                {'name': 'currency_address', 'type': 'TEXT'},
                {'name': 'marketplace', 'type': 'TEXT'},
                {'name': 'listed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                # At most one price currency
                'price_sol IS NULL OR price_usdc IS NULL'
            ],
            'indexes': [
                {'name': 'idx_nfts_collection', 'columns': ['collection_slug']},
                {'name': 'idx_nfts_owner', 'columns': ['owner']}
            ]
        },
        {
            'name': 'profiles',
            'columns': [
                {'name': 'wallet_address', 'type': 'TEXT', 'primary_key': True},
                {'name': 'email', 'type': 'TEXT'},
                {'name': 'display_name', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        }
    ]
}
