"""Add creation time and a listed-NFT index."""

schema = {
    'version': 2,
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
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                'price_sol IS NULL OR price_usdc IS NULL'
            ],
            'indexes': [
                {'name': 'idx_nfts_collection', 'columns': ['collection_slug']},
                {'name': 'idx_nfts_owner', 'columns': ['owner']},
                {'name': 'idx_nfts_listed', 'columns': ['collection_slug', 'listed_at'], 'where': 'is_listed'}
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
    ],
    'migrations': [
        # Migration SQL from v1 to v2
        '''
        ALTER TABLE nfts
        ADD COLUMN IF NOT EXISTS created_at TIMESTAMPTZ NOT NULL DEFAULT now();
        ''',
        '''
        CREATE INDEX IF NOT EXISTS idx_nfts_listed
        ON nfts(collection_slug, listed_at)
        WHERE is_listed;
        '''
    ]
}
